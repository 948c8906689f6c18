from __future__ import annotations

import asyncio
import time
from datetime import datetime

from voicepilot.actuator.actions import ActionContext, find_option, select_in_dropdown
from voicepilot.actuator.actuator import VoiceActuator
from voicepilot.actuator.normalizers import default_normalizers
from voicepilot.actuator.surface import Control, ControlKind, ControlSurface
from voicepilot.core.config.models import ActuatorConfig
from voicepilot.nlu.models import IntentResult, IntentType, VoiceEntity

from .helpers.fakes import DummyLogger


def _intent(intent: IntentType, **entities) -> IntentResult:
    return IntentResult(intent=intent, confidence=0.95, entities=entities)


def _signup_form() -> ControlSurface:
    return ControlSurface(
        [
            Control(ControlKind.INPUT, voice_name="Email", input_type="email"),
            Control(ControlKind.INPUT, voice_name="Birthday", input_type="date"),
            Control(ControlKind.INPUT, voice_name="Age", input_type="number"),
            Control(ControlKind.BUTTON, voice_name="Submit"),
            Control(ControlKind.CHECKBOX, voice_name="Accept terms", name="terms"),
            Control(ControlKind.CHECKBOX, voice_name="Accept privacy terms", name="terms"),
            Control(ControlKind.CHECKBOX, voice_name="Newsletter"),
            Control(
                ControlKind.SELECT,
                voice_name="Country",
                children=[
                    Control(ControlKind.OPTION, label="Norway", value="no"),
                    Control(ControlKind.OPTION, label="Sweden", value="se"),
                ],
            ),
        ],
        location="/signup",
    )


def _actuator(surface: ControlSurface, settle: float = 0.0, **kw) -> VoiceActuator:
    return VoiceActuator(
        surface,
        cfg=ActuatorConfig(settle_delay_seconds=settle),
        normalizers=default_normalizers(lambda: datetime(2024, 3, 15, 12, 0)),
        logger=DummyLogger(),
        **kw,
    )


def _control(surface: ControlSurface, name: str) -> Control:
    return next(c for c in surface.voice_controls() if c.voice_name == name)


def test_click_resolves_partial_name():
    surface = _signup_form()
    ok = asyncio.run(_actuator(surface).perform_action([_intent(IntentType.CLICK_ELEMENT, target="submit button")]))
    assert ok is True
    assert _control(surface, "Submit").click_count == 1


def test_empty_intent_list_is_a_failure():
    assert asyncio.run(_actuator(_signup_form()).perform_action([])) is False


def test_intent_without_action_is_skipped_and_the_rest_still_runs():
    surface = _signup_form()
    act = _actuator(surface)
    ok = asyncio.run(act.perform_action([IntentResult.unknown(), _intent(IntentType.GO_BACK)]))
    assert ok is False
    assert surface.back_count == 1


def test_intents_run_in_order_with_settle_delay():
    surface = _signup_form()
    act = _actuator(surface, settle=0.05)
    stamps = []

    def recorder(name):
        def action(pe, ctx):
            stamps.append((name, time.monotonic()))
            return True

        return action

    act.register_action(IntentType.CLICK_ELEMENT, recorder("first"))
    act.register_action(IntentType.GO_BACK, recorder("second"))
    ok = asyncio.run(act.perform_action([_intent(IntentType.CLICK_ELEMENT, target="submit"), _intent(IntentType.GO_BACK)]))
    assert ok is True
    assert [n for n, _ in stamps] == ["first", "second"]
    assert stamps[1][1] - stamps[0][1] >= 0.04


def test_fill_normalizes_by_input_type():
    surface = _signup_form()
    act = _actuator(surface)
    ok = asyncio.run(
        act.perform_action(
            [
                _intent(IntentType.FILL_INPUT, target="email", value="john at example dot com"),
                _intent(IntentType.FILL_INPUT, target="birthday", value="tomorrow"),
                _intent(IntentType.FILL_INPUT, target="age", value="about 42 and change"),
            ]
        )
    )
    assert ok is True
    assert _control(surface, "Email").value == "john@example.com"
    assert _control(surface, "Birthday").value == "2024-03-16"
    assert _control(surface, "Age").value == "42"
    assert _control(surface, "Email").events == ["input", "change"]


def test_fill_refuses_non_text_controls():
    surface = _signup_form()
    ok = asyncio.run(_actuator(surface).perform_action([_intent(IntentType.FILL_INPUT, target="submit", value="x")]))
    assert ok is False


def test_check_and_uncheck():
    surface = _signup_form()
    act = _actuator(surface)
    asyncio.run(act.perform_action([_intent(IntentType.CHECK_CHECKBOX, target="newsletter")]))
    assert _control(surface, "Newsletter").checked is True
    asyncio.run(act.perform_action([_intent(IntentType.UNCHECK_CHECKBOX, target="newsletter")]))
    assert _control(surface, "Newsletter").checked is False


def test_check_all_covers_the_group():
    surface = _signup_form()
    ok = asyncio.run(_actuator(surface).perform_action([_intent(IntentType.CHECK_ALL, target_group="terms")]))
    assert ok is True
    assert _control(surface, "Accept terms").checked
    assert _control(surface, "Accept privacy terms").checked
    assert not _control(surface, "Newsletter").checked


def test_target_group_key_alias_is_accepted():
    surface = _signup_form()
    for c in surface.family("terms"):
        c.checked = True
    ok = asyncio.run(_actuator(surface).perform_action([_intent(IntentType.UNCHECK_ALL, targetGroup="terms")]))
    assert ok is True
    assert not any(c.checked for c in surface.family("terms"))


def test_select_option_in_named_dropdown():
    surface = _signup_form()
    ok = asyncio.run(
        _actuator(surface).perform_action([_intent(IntentType.SELECT_RADIO_OR_DROPDOWN, target="sweden", group="country")])
    )
    assert ok is True
    assert _control(surface, "Country").value == "se"


def test_select_option_in_the_only_dropdown():
    surface = _signup_form()
    ok = asyncio.run(_actuator(surface).perform_action([_intent(IntentType.SELECT_RADIO_OR_DROPDOWN, target="norway")]))
    assert ok is True
    assert _control(surface, "Country").value == "no"


def _dropdown(name: str, *options) -> Control:
    return Control(ControlKind.SELECT, voice_name=name, children=[Control(ControlKind.OPTION, label=l, value=v) for l, v in options])


def test_select_picks_the_option_the_resolver_matched():
    language = _dropdown("Language", ("JavaScript", "js"), ("Java", "java"))
    country = _dropdown("Country", ("Australia", "au"), ("United States", "us"))
    surface = ControlSurface([language, country])
    ok = asyncio.run(
        _actuator(surface).perform_action(
            [
                _intent(IntentType.SELECT_RADIO_OR_DROPDOWN, target="Java", group="language"),
                _intent(IntentType.SELECT_RADIO_OR_DROPDOWN, target="us", group="country"),
            ]
        )
    )
    assert ok is True
    assert language.value == "java"
    assert country.value == "us"


def test_option_lookup_prefers_exact_then_substring_then_fuzzy():
    ctx = ActionContext(surface=ControlSurface(), logger=DummyLogger())
    language = _dropdown("Language", ("JavaScript", "js"), ("Java", "java"))
    assert select_in_dropdown(language, "Java", ctx) is True
    assert language.value == "java"

    country = _dropdown("Country", ("Australia", "au"), ("United States", "us"))
    assert select_in_dropdown(country, "us", ctx) is True
    assert country.value == "us"
    assert select_in_dropdown(country, "united", ctx) is True
    assert country.value == "us"
    assert select_in_dropdown(country, "au", ctx) is True
    assert select_in_dropdown(country, "the united states", ctx) is True
    assert country.value == "us"

    # an option from another dropdown is ignored and the name is looked up instead
    stray = Control(ControlKind.OPTION, label="Java", value="java")
    assert select_in_dropdown(country, "United States", ctx, option=stray) is True
    assert country.value == "us"
    assert find_option(country.options(), "finland", ctx.option_threshold) is None


def test_select_radio_by_group():
    surface = ControlSurface(
        [
            Control(ControlKind.RADIO, voice_name="Small", name="size"),
            Control(ControlKind.RADIO, voice_name="Large", name="size"),
        ]
    )
    ok = asyncio.run(_actuator(surface).perform_action([_intent(IntentType.SELECT_RADIO_OR_DROPDOWN, target="large")]))
    assert ok is True
    assert [c.checked for c in surface.radios_in_group("size")] == [False, True]


def test_select_unknown_option_fails():
    surface = _signup_form()
    ok = asyncio.run(
        _actuator(surface).perform_action([_intent(IntentType.SELECT_RADIO_OR_DROPDOWN, target="finland", group="country")])
    )
    assert ok is False
    assert _control(surface, "Country").value == ""


def test_open_dropdown_focuses_and_expands():
    surface = _signup_form()
    ok = asyncio.run(_actuator(surface).perform_action([_intent(IntentType.OPEN_DROPDOWN, target="country")]))
    assert ok is True
    country = _control(surface, "Country")
    assert country.expanded is True
    assert country.events[:2] == ["focus", "click"]


def test_open_custom_dropdown_clicks_its_toggle():
    toggle = Control(ControlKind.BUTTON, label="v", toggle=True)
    menu = Control(ControlKind.CONTAINER, voice_name="Account menu", children=[toggle])
    surface = ControlSurface([menu])
    ok = asyncio.run(_actuator(surface).perform_action([_intent(IntentType.OPEN_DROPDOWN, target="account menu")]))
    assert ok is True
    assert toggle.expanded is True
    assert toggle.focused is True


def test_scroll_directions():
    surface = ControlSurface(page_width=1000, page_height=2000)
    act = _actuator(surface)
    asyncio.run(act.perform_action([_intent(IntentType.SCROLL, direction="down")] * 2))
    assert surface.scroll_y == 600
    asyncio.run(act.perform_action([_intent(IntentType.SCROLL, direction="bottom")]))
    assert surface.scroll_y == 2000
    asyncio.run(act.perform_action([_intent(IntentType.SCROLL, direction="right"), _intent(IntentType.SCROLL, direction="top")]))
    assert (surface.scroll_x, surface.scroll_y) == (0, 0)
    assert asyncio.run(act.perform_action([_intent(IntentType.SCROLL, direction="sideways")])) is False


def test_scroll_to_element_outside_viewport():
    footer = Control(ControlKind.LINK, voice_name="Contact us", in_viewport=False)
    surface = ControlSurface([footer])
    ok = asyncio.run(_actuator(surface).perform_action([_intent(IntentType.SCROLL_TO_ELEMENT, target="contact us")]))
    assert ok is True
    assert footer.events == ["scroll_into_view", "focus"]
    assert footer.click_count == 0


def test_scroll_to_element_in_viewport_clicks_it():
    link = Control(ControlKind.LINK, voice_name="Contact us")
    surface = ControlSurface([link])
    asyncio.run(_actuator(surface).perform_action([_intent(IntentType.SCROLL_TO_ELEMENT, target="contact us")]))
    assert link.events == ["focus", "click"]


def test_go_back_pops_history():
    surface = _signup_form()
    surface.navigate("/signup/step-2")
    asyncio.run(_actuator(surface).perform_action([_intent(IntentType.GO_BACK)]))
    assert surface.location == "/signup"


def test_multilingual_entity_resolves_by_spoken_form():
    surface = ControlSurface([Control(ControlKind.BUTTON, voice_name="Send inn")])
    target = VoiceEntity(english="submit", spoken_form="send inn")
    ok = asyncio.run(_actuator(surface).perform_action([_intent(IntentType.CLICK_ELEMENT, target=target)]))
    assert ok is True
    assert _control(surface, "Send inn").click_count == 1


def test_failing_action_does_not_stop_the_sequence():
    surface = _signup_form()
    act = _actuator(surface)

    def boom(pe, ctx):
        raise RuntimeError("widget went away")

    act.register_action(IntentType.CLICK_ELEMENT, boom)
    ok = asyncio.run(act.perform_action([_intent(IntentType.CLICK_ELEMENT, target="submit"), _intent(IntentType.GO_BACK)]))
    assert ok is False
    assert surface.back_count == 1
