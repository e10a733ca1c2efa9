"""Command line entry points: offline simulation and a headless websocket client."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import Any, Iterable, List, TextIO

from .config import DEFAULT_CONFIG_FILE, ClientConfig, load_config
from .connection import ConnectionGateway
from .errors import ChatClientError
from .loopback import LoopbackTransport
from .sync import Synchronizer
from .view import ViewModel
from .ws_transport import WebSocketTransport


def _write(output: TextIO, kind: str, body: Any) -> None:
    output.write(json.dumps({"t": kind, "body": body}, sort_keys=True) + "\n")


def _run_action(sync: Synchronizer, step: dict) -> None:
    action = step.get("action")
    arg = step.get("arg")
    if action == "register":
        sync.register(str(arg or ""))
    elif action == "select":
        sync.select_conversation(str(arg or ""))
    elif action == "send":
        sync.send_message(str(arg or ""))
    elif action == "input":
        sync.input_changed(str(arg or ""))
    elif action == "teardown":
        sync.teardown()
    else:
        raise ValueError(f"unsupported action: {action}")


async def simulate(steps: Iterable[dict], output: TextIO, config: ClientConfig | None = None) -> ViewModel:
    """Replay scripted server events, acks and user actions through a synchronizer.

    Every outbound frame is written as a JSON line as soon as it is produced,
    followed by the final view model.
    """

    transport = LoopbackTransport()
    sync = Synchronizer(ConnectionGateway(transport), config)
    written = 0

    for step in steps:
        kind = step.get("t")
        if kind == "event":
            transport.emit(step["event"], step.get("body"))
        elif kind == "ack":
            transport.ack(step["id"], step.get("body"))
        elif kind == "action":
            try:
                _run_action(sync, step)
            except ChatClientError as exc:
                _write(output, "error", {"action": step.get("action"), "message": str(exc)})
        elif kind == "sleep":
            await asyncio.sleep(float(step.get("seconds", 0)))
        else:
            raise ValueError(f"unsupported step type: {kind}")

        # Let fetch tasks issue their requests and consume acks.
        for _ in range(3):
            await asyncio.sleep(0)
        for frame in transport.sent[written:]:
            _write(output, "out", frame)
        written = len(transport.sent)

    view = sync.view()
    sync.teardown()
    _write(output, "view", view.to_dict())
    return view


def _load_steps(handle: TextIO) -> List[dict]:
    content = handle.read()
    if not content.strip():
        return []

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        parsed = None

    if parsed is None:
        return [json.loads(line) for line in content.splitlines() if line.strip()]
    if isinstance(parsed, list):
        return parsed
    return [parsed]


async def _connect(config: ClientConfig, username: str, output: TextIO) -> None:
    transport = WebSocketTransport(config)
    sync = Synchronizer(ConnectionGateway(transport), config)

    def _print_view(view: ViewModel) -> None:
        _write(output, "view", view.to_dict())
        output.flush()

    sync.add_listener(_print_view)
    await transport.connect()
    try:
        sync.register(username)
        await asyncio.Event().wait()
    finally:
        await sync.aclose()


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    parser = argparse.ArgumentParser(description="Chat client core")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at debug level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    simulate_parser = subparsers.add_parser("simulate", help="Replay scripted steps offline")
    simulate_parser.add_argument(
        "-f",
        "--file",
        type=argparse.FileType("r"),
        default=None,
        help="Path to JSON steps file; defaults to stdin",
    )
    simulate_parser.add_argument(
        "--typing-timeout",
        type=float,
        default=None,
        help="Seconds of inactivity before the typing signal clears",
    )

    connect_parser = subparsers.add_parser("connect", help="Register over websockets and print view changes")
    connect_parser.add_argument("--username", required=True, help="Name to register with")
    connect_parser.add_argument("--url", default=None, help="Websocket URL; overrides the config file")
    connect_parser.add_argument("--config", default=str(DEFAULT_CONFIG_FILE), help="Path to JSON config file")

    args = parser.parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    stream = output or sys.stdout

    if args.command == "simulate":
        config = ClientConfig()
        if args.typing_timeout is not None:
            config = replace(config, typing_timeout_s=args.typing_timeout)
        if args.file is not None:
            with args.file as handle:
                steps = _load_steps(handle)
        else:
            steps = _load_steps(sys.stdin)
        asyncio.run(simulate(steps, stream, config))
        return 0

    config = load_config(args.config)
    if args.url:
        config = replace(config, url=args.url)
    try:
        asyncio.run(_connect(config, args.username, stream))
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
