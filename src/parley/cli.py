"""CLI entry point."""

from __future__ import annotations

import argparse
import logging
import os
import sys

import yaml

from .analysis import looks_like_question
from .config import Config, config_to_dict, load_config, save_config
from .engine import ConversationEngine
from .logging_utils import setup_logging
from .models import Session
from .storage import ensure_structure
from .summarizer import generate_meeting_summary_text
from .timeutil import display_time


def _load(path: str, data_dir: str | None) -> Config:
    cfg = load_config(path) if os.path.exists(path) else Config()
    if data_dir:
        cfg.data_dir = data_dir
    return cfg


def _describe(session: Session, current_id: str | None) -> str:
    marker = "*" if session.session_id == current_id else " "
    started = session.start_time.astimezone().strftime("%Y-%m-%d %H:%M")
    return (
        f"{marker} {session.session_id}  {started}  "
        f"{len(session.messages):>4} msgs  {session.title or ''}"
    )


def _print_session(session: Session) -> None:
    print(f"Session: {session.title}")
    print(f"Id: {session.session_id}")
    print(f"Started: {session.start_time.astimezone().strftime('%Y-%m-%d %H:%M:%S')}")
    if session.end_time:
        print(f"Ended: {session.end_time.astimezone().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"Messages: {len(session.messages)}")
    print("Speakers:")
    for speaker in session.speakers:
        print(
            f"  {speaker.speaker_id} ({speaker.name}): "
            f"{speaker.message_count} messages, last active {display_time(speaker.last_active)}"
        )
    if session.summaries:
        print("")
        print(session.summaries[-1].content)
    if session.compressed_history:
        print("")
        print(f"Compressed groups: {len(session.compressed_history)}")
        for group in session.compressed_history:
            print(f"  [{group.speaker_id}] {group.summary}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="parley")
    parser.add_argument("--config", default="parley_config.yml", help="Config.")
    parser.add_argument("--data-dir", help="Directory holding the session store.")
    parser.add_argument("--verbose", action="store_true", help="Debug logging.")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("sessions")

    start_cmd = sub.add_parser("start")
    start_cmd.add_argument("--title", help="Session title.")

    sub.add_parser("end")

    continue_cmd = sub.add_parser("continue")
    continue_cmd.add_argument("session_id", help="Session to reactivate.")

    add_cmd = sub.add_parser("add")
    add_cmd.add_argument("text", help="Utterance text.")
    add_cmd.add_argument("--question", action="store_true", help="Mark as a question.")

    sub.add_parser("listen")

    show_cmd = sub.add_parser("show")
    show_cmd.add_argument("session_id", nargs="?", help="Defaults to the current session.")

    rename_cmd = sub.add_parser("rename-speaker")
    rename_cmd.add_argument("speaker_id", help="e.g. speaker_1")
    rename_cmd.add_argument("name", help="Display name.")

    digest_cmd = sub.add_parser("digest")
    digest_cmd.add_argument("session_id", nargs="?", help="Defaults to the current session.")
    digest_cmd.add_argument("--max-bullets", type=int, default=6, help="Bullet limit.")

    config_cmd = sub.add_parser("config")
    config_cmd.add_argument(
        "--write", action="store_true", help="Write the effective config to --config."
    )

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    cfg = _load(args.config, args.data_dir)

    if args.command == "config":
        if args.write:
            save_config(args.config, cfg)
            print(f"Wrote {args.config}")
        else:
            print(yaml.safe_dump(config_to_dict(cfg), sort_keys=False).rstrip())
        return 0

    paths = ensure_structure(cfg.data_dir or os.getcwd())
    cfg.data_dir = paths["root"]
    setup_logging(
        cfg.log_dir or paths["logs"], logging.DEBUG if args.verbose else logging.INFO
    )

    with ConversationEngine.from_config(cfg) as engine:
        if args.command == "sessions":
            current = engine.get_current_session()
            current_id = current.session_id if current else None
            sessions = engine.get_all_sessions()
            if not sessions:
                print("No sessions.")
            for session in sessions:
                print(_describe(session, current_id))
            return 0

        if args.command == "start":
            session = engine.start_session(args.title)
            print(f"Started {session.session_id}: {session.title}")
            return 0

        if args.command == "end":
            session = engine.end_current_session()
            if session is None:
                print("No active session.")
                return 1
            print(f"Ended {session.session_id}")
            return 0

        if args.command == "continue":
            if not engine.continue_session(args.session_id):
                print(f"Session not found: {args.session_id}")
                return 1
            print(f"Continued {args.session_id}")
            return 0

        if args.command == "add":
            message = engine.add_message(args.text, is_question=bool(args.question))
            if message is None:
                print("Ignored (too short).")
                return 0
            print(f"{message.speaker_id}: {message.content}")
            return 0

        if args.command == "listen":
            count = 0
            for line in sys.stdin:
                text = line.strip()
                if not text:
                    engine.tick()
                    continue
                message = engine.add_message(text, is_question=looks_like_question(text))
                if message is not None:
                    count += 1
                    print(f"{message.speaker_id}: {message.content}", flush=True)
                engine.tick()
            print(f"Recorded {count} messages")
            return 0

        if args.command == "show":
            session = (
                engine.get_session(args.session_id)
                if args.session_id
                else engine.get_current_session()
            )
            if session is None:
                print("Session not found.")
                return 1
            _print_session(session)
            return 0

        if args.command == "rename-speaker":
            try:
                renamed = engine.rename_speaker(args.speaker_id, args.name)
            except ValueError as exc:
                print(str(exc))
                return 1
            if not renamed:
                print(f"Speaker not found: {args.speaker_id}")
                return 1
            print(f"{args.speaker_id} is now {args.name.strip()}")
            return 0

        if args.command == "digest":
            session = (
                engine.get_session(args.session_id)
                if args.session_id
                else engine.get_current_session()
            )
            if session is None:
                print("Session not found.")
                return 1
            print(generate_meeting_summary_text(session, max_bullets=args.max_bullets))
            return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
