from __future__ import annotations

import pytest

from voicepilot.core.config.models import MatcherConfig
from voicepilot.nlu.models import CommandTemplate, IntentType
from voicepilot.nlu.pattern_matcher import PatternIntentMatcher
from voicepilot.nlu.registry import PLACEHOLDER_RE, CommandRegistry, default_registry, default_templates


SAMPLE_VALUES = {
    "target": "newsletter",
    "group": "country",
    "target_group": "terms",
    "value": "hello world",
    "direction": "down",
}


def _matcher(**kw) -> PatternIntentMatcher:
    return PatternIntentMatcher(default_registry(), **kw)


def test_click_submit_button_example():
    [res] = _matcher().detect_intent("click submit button")
    assert res.intent == IntentType.CLICK_ELEMENT
    assert res.confidence >= 0.8
    assert res.entities == {"target": "submit button"}
    assert res.source == "pattern"


def test_fill_email_keeps_raw_value():
    [res] = _matcher().detect_intent("fill email as john at example dot com")
    assert res.intent == IntentType.FILL_INPUT
    assert res.entities == {"target": "email", "value": "john at example dot com"}


@pytest.mark.parametrize(
    "template,utterance",
    [(t, u) for t in default_templates() for u in t.utterances],
    ids=lambda x: x if isinstance(x, str) else x.intent.value,
)
def test_every_template_matches_its_own_utterances(template: CommandTemplate, utterance: str):
    names = PLACEHOLDER_RE.findall(utterance)
    text = PLACEHOLDER_RE.sub(lambda m: SAMPLE_VALUES[m.group(1)], utterance)
    [res] = _matcher().detect_intent(text)
    assert res.intent == template.intent, text
    assert res.confidence >= 0.9
    assert res.entities == {n: SAMPLE_VALUES[n] for n in names}


def test_compound_command_keeps_spoken_order():
    results = _matcher().detect_intent("check all terms and go back")
    assert [r.intent for r in results] == [IntentType.CHECK_ALL, IntentType.GO_BACK]
    assert results[0].entities == {"target_group": "terms"}
    assert results[1].entities == {}


def test_compound_split_requires_every_part_to_match():
    # "go fishing" is not a command, so the whole utterance is matched as one
    [res] = _matcher().detect_intent("fill notes with bread and go fishing")
    assert res.intent == IntentType.FILL_INPUT
    assert res.entities["value"] == "bread and go fishing"


def test_comma_inside_a_value_does_not_split_the_command():
    [res] = _matcher().detect_intent("fill notes as hi, go back")
    assert res.intent == IntentType.FILL_INPUT
    assert res.entities == {"target": "notes", "value": "hi, go back"}


def test_spoken_and_typed_connectors_split_the_command():
    for text in ("check all terms, and then go back", "check all terms; go back", "check all terms then go back"):
        results = _matcher().detect_intent(text)
        assert [r.intent for r in results] == [IntentType.CHECK_ALL, IntentType.GO_BACK], text


def test_misheard_keyword_is_corrected():
    [res] = _matcher().detect_intent("clik submit button")
    assert res.intent == IntentType.CLICK_ELEMENT
    assert res.entities == {"target": "submit button"}


def test_fuzzy_score_is_monotonic_in_edit_distance():
    m = _matcher()
    pattern = next(p for p in m.patterns if p.utterance == "click (target)")
    # edit distance to "click": 5, 2, 1, 0
    scores = [m.fuzzy_score(f"{w} submit", pattern) for w in ("zzzzz", "clizz", "clicz", "click")]
    assert scores == sorted(scores)
    assert scores[-1] == pytest.approx(1.0)
    assert scores[0] == 0.0


def test_unrelated_sentence_is_unknown():
    [res] = _matcher().detect_intent("tell me a joke")
    assert res.intent == IntentType.UNKNOWN
    assert res.confidence == 0.0
    assert res.entities == {}


@pytest.mark.parametrize("text", ["", "   ", "please", "thanks!"])
def test_empty_or_courtesy_only_input_is_unknown(text):
    [res] = _matcher().detect_intent(text)
    assert res.is_unknown


def test_polite_phrases_and_articles_are_stripped():
    [res] = _matcher().detect_intent("please click the submit button, thanks")
    assert res.intent == IntentType.CLICK_ELEMENT
    assert res.entities == {"target": "submit button"}


def test_scroll_direction_is_a_closed_vocabulary():
    [res] = _matcher().detect_intent("scroll sideways")
    assert res.is_unknown
    [res] = _matcher().detect_intent("Scroll DOWN")
    assert res.intent == IntentType.SCROLL
    assert res.entities == {"direction": "down"}


def test_go_to_prefers_direction_then_element():
    [res] = _matcher().detect_intent("go to bottom")
    assert res.intent == IntentType.SCROLL
    [res] = _matcher().detect_intent("go to contact form")
    assert res.intent == IntentType.SCROLL_TO_ELEMENT
    assert res.entities == {"target": "contact form"}


def test_non_english_input_is_not_pattern_matched():
    [res] = _matcher(lang="no").detect_intent("click submit button")
    assert res.is_unknown


def test_thresholds_come_from_config():
    strict = _matcher(cfg=MatcherConfig(exact_threshold=0.99, fuzzy_threshold=0.95, keyword_floor=0.9))
    # partial coverage no longer counts as exact, and the misheard keyword is too far off
    [res] = strict.detect_intent("clik submit button")
    assert res.is_unknown


def test_registry_rejects_undeclared_placeholder():
    reg = CommandRegistry()
    with pytest.raises(ValueError):
        reg.register(CommandTemplate(IntentType.CLICK_ELEMENT, ("click (thing)",), ("target",)))


def test_custom_template_is_matched_after_register():
    m = PatternIntentMatcher(CommandRegistry())
    assert m.detect_intent("hit save")[0].is_unknown
    m.register(CommandTemplate(IntentType.CLICK_ELEMENT, ("hit (target)",), ("target",)))
    [res] = m.detect_intent("hit save")
    assert res.intent == IntentType.CLICK_ELEMENT
    assert res.entities == {"target": "save"}
