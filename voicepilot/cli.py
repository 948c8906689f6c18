from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional

from voicepilot.actuator.surface import ControlKind, ControlSurface
from voicepilot.core.app import VoicePilot
from voicepilot.core.config import load_config, read_json_file
from voicepilot.core.errors import VoicePilotError
from voicepilot.core.events import BaseEvent
from voicepilot.core.logger import setup_logging
from voicepilot.ui.handler import ConsoleUIHandler

HELP = "Commands: /record, /stop, /status, /surface, /mics, /events [stats|dump <path>], /errors [last n|show <trace_id>|session <id>], /exit"


def load_surface(path: Optional[str]) -> ControlSurface:
    if not path:
        return ControlSurface()
    rr = read_json_file(path)
    if not rr.ok:
        raise VoicePilotError(code="surface_error", user_message=f"Could not read surface file {path} ({rr.error}).")
    try:
        return ControlSurface.from_dict(rr.data)
    except ValueError as e:
        raise VoicePilotError(code="surface_error", user_message=f"Surface file {path} is invalid.", context={"error": str(e)}) from e


def _print_action(ev: BaseEvent) -> None:
    p = ev.payload
    if ev.event_type == "action.performed":
        print(f"  performed: {p.get('intent')} {p.get('entities') or {}}")
    elif ev.event_type == "action.paused":
        print(f"  paused: {p.get('intent')} ({p.get('reason')})")


def _describe_surface(surface: ControlSurface) -> List[str]:
    out = [f"location={surface.location} scroll=({surface.scroll_x},{surface.scroll_y})"]
    for c in surface.voice_controls():
        state = ""
        if c.kind in (ControlKind.CHECKBOX, ControlKind.RADIO):
            state = " [x]" if c.checked else " [ ]"
        elif c.value:
            state = f" = {c.value!r}"
        out.append(f"  {c.kind.value:9s} {c.voice_name}{state}")
    return out


def _build_capturer(app_cfg, logger):
    from voicepilot.voice.audio import SoundDeviceCapturer

    return SoundDeviceCapturer(cfg=app_cfg.capture, logger=logger)


async def _handle_command(pilot: VoicePilot, text: str) -> bool:
    """Returns False when the REPL should exit."""
    parts = text.split()
    cmd = parts[0]
    if cmd == "/exit":
        return False
    if cmd == "/record":
        pilot.press_record()
        await asyncio.sleep(0)
        return True
    if cmd == "/stop":
        pilot.press_stop()
        await pilot.settle()
        return True
    if cmd == "/status":
        print(pilot.status())
        return True
    if cmd == "/surface":
        for line in _describe_surface(pilot.surface):
            print(line)
        return True
    if cmd == "/mics":
        try:
            from voicepilot.voice.audio import list_microphones

            for m in list_microphones():
                print(f"{m['index']}: {m['name']}")
        except Exception as e:  # noqa: BLE001
            print(f"Unable to list microphones: {e}")
        return True
    if cmd == "/events":
        if len(parts) >= 3 and parts[1] == "dump":
            path = parts[2]
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(pilot.bus.dump_recent(500), f, indent=2, ensure_ascii=False)
            print(f"Exported to {path}")
            return True
        stats = pilot.bus.get_stats()
        stats.pop("recent", None)
        print(stats)
        return True
    if cmd == "/errors":
        if len(parts) >= 3 and parts[1] in {"show", "session"}:
            lookup = pilot.error_reporter.by_trace_id if parts[1] == "show" else pilot.error_reporter.by_session_id
            for e in lookup(parts[2]):
                print(e)
            return True
        n = int(parts[2]) if len(parts) >= 3 and parts[2].isdigit() else 20
        for e in pilot.error_reporter.tail(n):
            print(e)
        return True
    print(HELP)
    return True


async def run(args: argparse.Namespace) -> int:
    level = getattr(logging, str(args.log_level).upper(), logging.INFO)
    logger = setup_logging(args.log_dir, level=level, console=not args.quiet)
    try:
        cfg = load_config(args.config, logger=logger)
        surface = load_surface(args.surface)
        capturer = _build_capturer(cfg, logger) if args.voice else None
        pilot = VoicePilot(cfg, surface=surface, ui=ConsoleUIHandler(logger=logger), capturer=capturer, logger=logger)
    except VoicePilotError as e:
        logger.error(f"startup failed: {e.user_message} {e.context}")
        return 2

    pilot.bus.subscribe("action.*", _print_action, priority=90)
    await pilot.start()
    try:
        if args.text:
            for utterance in args.text:
                await pilot.submit_text(utterance)
            return 0

        logger.info(f"VoicePilot ready. Type a command, or /exit to quit. {HELP}")
        while True:
            try:
                text = (await asyncio.to_thread(input, "> ")).strip()
            except EOFError:
                print()
                break
            if not text:
                continue
            if text.startswith("/"):
                if not await _handle_command(pilot, text):
                    break
                continue
            await pilot.submit_text(text)
        return 0
    finally:
        await pilot.shutdown()


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="VoicePilot: voice commands for a control surface")
    ap.add_argument("--config", default=os.path.join("config", "voicepilot.json"), help="Path to the JSON config file.")
    ap.add_argument("--surface", default=None, help="JSON file describing the controls to drive.")
    ap.add_argument("--text", action="append", default=None, help="Run one typed utterance and exit (repeatable).")
    ap.add_argument("--voice", action="store_true", help="Capture from the microphone (needs the audio extra).")
    ap.add_argument("--log-dir", default="logs", help="Directory for log files.")
    ap.add_argument("--log-level", default="INFO", help="Logging level.")
    ap.add_argument("--quiet", action="store_true", help="Log to the file only.")
    args = ap.parse_args(argv)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print()
        return 130


if __name__ == "__main__":
    sys.exit(main())
