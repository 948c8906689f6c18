from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from voicepilot.actuator.actions import Action, ActionContext, default_action_table
from voicepilot.actuator.entities import ProcessedEntities, normalize_entities, resolve_entities
from voicepilot.actuator.normalizers import ValueNormalizer, default_normalizers
from voicepilot.actuator.resolver import ElementResolver
from voicepilot.actuator.surface import ControlSurface
from voicepilot.core.config.models import ActuatorConfig
from voicepilot.core.events import EventSeverity, SourceSubsystem, SpeechEvent, make_event
from voicepilot.nlu.models import IntentResult, IntentType, VoiceEntity


def _entities_payload(entities: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (v.model_dump() if isinstance(v, VoiceEntity) else v) for k, v in entities.items()}


class VoiceActuator:
    """
    Turns recognized intents into operations on the control surface.

    Intents run strictly one after another; each is followed by a short
    settle delay so the host can react before the next one.
    """

    def __init__(
        self,
        surface: ControlSurface,
        *,
        bus=None,
        cfg: Optional[ActuatorConfig] = None,
        resolver: Optional[ElementResolver] = None,
        normalizers: Optional[List[ValueNormalizer]] = None,
        logger=None,
    ):
        self.surface = surface
        self.bus = bus
        self.cfg = cfg or ActuatorConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.resolver = resolver or ElementResolver(surface, group_threshold=self.cfg.group_match_threshold, logger=self.logger)
        self.normalizers = normalizers if normalizers is not None else default_normalizers()
        self.ctx = ActionContext(
            surface=surface,
            scroll_amount=self.cfg.scroll_amount,
            option_threshold=self.cfg.group_match_threshold,
            logger=self.logger,
        )
        self._actions: Dict[IntentType, Action] = default_action_table()

    def register_action(self, intent: IntentType, action: Action) -> None:
        self._actions[intent] = action

    def process_entities(self, intent: IntentType, entities: Dict[str, Any]) -> ProcessedEntities:
        pe = ProcessedEntities.from_entities(entities)
        pe = resolve_entities(intent, pe, self.resolver)
        return normalize_entities(intent, pe, self.normalizers)

    async def perform_action(
        self,
        intents: Sequence[IntentResult],
        *,
        trace_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> bool:
        if not intents:
            self.logger.info("actuator: no intents to perform")
            return False
        all_ok = True
        for intent in intents:
            ok = await self._execute_intent(intent, trace_id=trace_id, session_id=session_id)
            all_ok = all_ok and ok
        self._publish(SpeechEvent.EXECUTION_COMPLETE, trace_id, session_id=session_id, success=all_ok, count=len(intents))
        return all_ok

    async def _execute_intent(self, intent: IntentResult, *, trace_id: Optional[str], session_id: Optional[str]) -> bool:
        action = self._actions.get(intent.intent)
        if action is None:
            self.logger.info(f"actuator: no action registered for '{intent.intent.value}'")
            self._publish(SpeechEvent.ACTION_PAUSED, trace_id, session_id=session_id, intent=intent.intent.value, reason="no_action")
            await self._settle()
            return False

        try:
            pe = self.process_entities(intent.intent, dict(intent.entities))
            ok = bool(action(pe, self.ctx))
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"actuator: {intent.intent.value} failed: {e}")
            ok = False

        if ok:
            self._publish(
                SpeechEvent.ACTION_PERFORMED,
                trace_id,
                session_id=session_id,
                intent=intent.intent.value,
                entities=_entities_payload(dict(intent.entities)),
            )
        else:
            self._publish(SpeechEvent.ACTION_PAUSED, trace_id, session_id=session_id, intent=intent.intent.value, reason="not_executed")
        await self._settle()
        return ok

    async def _settle(self) -> None:
        await asyncio.sleep(float(self.cfg.settle_delay_seconds))

    def _publish(self, event: SpeechEvent, trace_id: Optional[str], **payload: Any) -> None:
        if self.bus is None:
            return
        severity = EventSeverity.WARN if event == SpeechEvent.ACTION_PAUSED else EventSeverity.INFO
        self.bus.publish(make_event(event, source=SourceSubsystem.actuator, trace_id=trace_id, severity=severity, **payload))
