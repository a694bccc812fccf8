"""CLI entry point for the streaming session client.

Usage:
    agentwire run "Add a health endpoint"
    agentwire run --slot chat-1 --mode plan --model openai/gpt-4o "Plan the refactor"
    agentwire --url http://localhost:4096 health
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

import yaml

from agentwire.adapters.events import event_to_dict

from .backend import BackendClient
from .config import ClientConfig
from .engine import StreamingClient
from .models import ConversationTurn, TurnMode
from .yaml_config import load_yaml_config


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentwire",
        description="Stream turns from an HTTP/SSE coding-agent server",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file (default: AGENTWIRE_* environment variables)",
    )
    parser.add_argument(
        "--url",
        default=None,
        help="Agent server base URL (overrides config)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one turn and print events as JSON lines")
    run.add_argument("prompt", help="Prompt text")
    run.add_argument("--slot", default="cli", help="Conversation slot id (default: cli)")
    run.add_argument("--session", default=None, help="Reuse this backend session id")
    run.add_argument(
        "--mode",
        default=TurnMode.BUILD.value,
        choices=[m.value for m in TurnMode],
        help="Turn mode (default: build)",
    )
    run.add_argument("--model", default=None, help="provider/model or bare model id")
    run.add_argument("--cwd", default=None, help="Working directory sent to the server")
    run.add_argument("--system", default=None, help="System prompt override")

    sub.add_parser("health", help="Check that the agent server is reachable")
    return parser


def _load_config(args: argparse.Namespace) -> ClientConfig:
    config = load_yaml_config(args.config) if args.config else ClientConfig.from_env()
    if args.url:
        config.server_url = args.url.rstrip("/")
    return config


async def _run_turn(config: ClientConfig, args: argparse.Namespace) -> int:
    turn = ConversationTurn(
        slot_id=args.slot,
        prompt_text=args.prompt,
        mode=TurnMode(args.mode),
        session_id=args.session,
        model=args.model,
        working_directory=args.cwd,
        system_prompt_override=args.system,
    )
    exit_code = 0
    async with StreamingClient(config) as client:
        await client.start()
        async for event in client.stream_turn(turn):
            print(json.dumps(event_to_dict(event), default=str), flush=True)
            if event.type == "finish" and getattr(event, "reason", "") == "error":
                exit_code = 1
    return exit_code


async def _health(config: ClientConfig) -> int:
    backend = BackendClient(config)
    try:
        healthy = await backend.health()
    finally:
        await backend.close()
    print(f"{config.server_url}: {'healthy' if healthy else 'unreachable'}")
    return 0 if healthy else 1


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    try:
        config = _load_config(args)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"Error: cannot load config: {exc}", file=sys.stderr)
        sys.exit(2)
    if not args.verbose:
        logging.getLogger().setLevel(config.log_level.upper())

    try:
        if args.command == "health":
            code = asyncio.run(_health(config))
        else:
            code = asyncio.run(_run_turn(config, args))
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
