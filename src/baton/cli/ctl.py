"""Command-line interface for controlling the baton daemon."""

import argparse
import asyncio
import json
import sys
from typing import Optional

from baton.config import IPCConfig
from baton.ipc.protocol import (
    Command,
    CommandType,
    DataResponse,
    DebugDumpResponse,
    ResponseStatus,
    SimpleResponse,
    StatusResponse,
)

# Manual rotations wait for the old agent's summary and the new agent's startup
RESPONSE_TIMEOUT = 120.0


async def send_command(socket_path: str, command: Command, timeout: float = RESPONSE_TIMEOUT) -> str:
    """Send a command to the daemon and return the raw JSON response.

    Raises:
        SystemExit: On connection errors.
    """
    try:
        reader, writer = await asyncio.open_unix_connection(socket_path)

        writer.write(command.to_json().encode() + b"\n")
        await writer.drain()

        data = await asyncio.wait_for(reader.readline(), timeout=timeout)

        writer.close()
        await writer.wait_closed()

        return data.decode().strip()

    except FileNotFoundError:
        print("Error: Daemon is not running (socket not found)", file=sys.stderr)
        sys.exit(1)
    except ConnectionRefusedError:
        print("Error: Daemon refused connection", file=sys.stderr)
        sys.exit(1)
    except asyncio.TimeoutError:
        print("Error: Daemon did not respond in time", file=sys.stderr)
        sys.exit(1)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def build_command(args: argparse.Namespace) -> Command:
    """Translate parsed arguments into an IPC command."""
    if args.command == "rotate":
        return Command(CommandType.ROTATE, {"agent_id": args.agent_id})
    if args.command == "record":
        return Command(
            CommandType.RECORD,
            {
                "agent_id": args.agent_id,
                "input_tokens": args.input_tokens,
                "output_tokens": args.output_tokens,
            },
        )
    if args.command == "report":
        text = args.text if args.text is not None else sys.stdin.read()
        return Command(CommandType.REPORT, {"agent_id": args.agent_id, "text": text})
    if args.command == "history" and args.clear:
        return Command(CommandType.CLEAR_HISTORY)
    if args.command == "debug-dump":
        dump_args = {"lines": args.lines}
        for key in ("component", "level", "agent"):
            value = getattr(args, key, None)
            if value:
                dump_args[key] = value
        return Command(CommandType.DEBUG_DUMP, dump_args)

    command_map = {
        "status": CommandType.STATUS,
        "agents": CommandType.AGENTS,
        "history": CommandType.HISTORY,
        "shutdown": CommandType.SHUTDOWN,
    }
    return Command(command_map[args.command])


def _fail(error: Optional[str]) -> None:
    print(f"Error: {error}", file=sys.stderr)
    sys.exit(1)


def format_agents(agents: dict) -> str:
    if not agents:
        return "No agents tracked"
    lines = [f"{'AGENT':<32} {'USAGE':>7} {'TOKENS':>16} {'CONF':>5}  METHOD"]
    for agent_id, info in agents.items():
        est = info.get("estimate")
        if est is None:
            lines.append(f"{agent_id:<32} {'-':>7} {'-':>16} {'-':>5}  (no data)")
            continue
        tokens = f"{est['tokens_used']}/{est['context_limit']}"
        lines.append(
            f"{agent_id:<32} {est['usage_percent']:>6.1f}% {tokens:>16} "
            f"{est['confidence']:>5.2f}  {est['method']}"
        )
    return "\n".join(lines)


def format_history(events: list) -> str:
    if not events:
        return "No rotations recorded"
    lines = []
    for e in events:
        line = (
            f"{e['old_agent_id']} -> {e['new_agent_id']}  {e['method']}  "
            f"was {e['context_before']:.1f}%  summary {e['summary_tokens']} tokens  "
            f"{e['duration']:.1f}s"
        )
        if e.get("error"):
            line += f"  ({e['error']})"
        lines.append(line)
    return "\n".join(lines)


def main() -> None:
    """Main entry point for baton-ctl."""
    parser = argparse.ArgumentParser(
        prog="baton-ctl",
        description="Control the baton daemon",
    )
    parser.add_argument(
        "--socket",
        "-s",
        default=IPCConfig().get_socket_path(),
        help="Path to daemon socket",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the raw JSON response",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Get daemon status")
    subparsers.add_parser("agents", help="Show context usage per agent")
    rotate_parser = subparsers.add_parser("rotate", help="Rotate an agent now")
    rotate_parser.add_argument("agent_id", help="Agent id (pane title), e.g. proj__cc_1")
    history_parser = subparsers.add_parser("history", help="Show rotation history")
    history_parser.add_argument("--clear", action="store_true", help="Clear the rotation history")
    record_parser = subparsers.add_parser("record", help="Record a message exchange for an agent")
    record_parser.add_argument("agent_id")
    record_parser.add_argument("--input-tokens", type=int, default=0)
    record_parser.add_argument("--output-tokens", type=int, default=0)
    report_parser = subparsers.add_parser("report", help="Feed a direct context report (JSON)")
    report_parser.add_argument("agent_id")
    report_parser.add_argument("text", nargs="?", help="Report text; read from stdin if omitted")
    subparsers.add_parser("shutdown", help="Shutdown the daemon")
    debug_parser = subparsers.add_parser("debug-dump", help="Dump debug logs for troubleshooting")
    debug_parser.add_argument("--lines", type=int, default=200)
    debug_parser.add_argument("--component", help="Only records from this component, e.g. rotation")
    debug_parser.add_argument("--level", help="Only records at this level, e.g. WARNING")
    debug_parser.add_argument("--agent", help="Only records logged while rotating this agent")
    debug_parser.add_argument(
        "--raw",
        action="store_true",
        help="Output raw JSON lines (for piping to tools)",
    )

    args = parser.parse_args()

    command = build_command(args)
    response_json = asyncio.run(send_command(args.socket, command))

    if args.json:
        print(response_json)
        return

    if args.command == "status":
        response = StatusResponse.from_json(response_json)
        print(f"Session:   {response.session}")
        print(f"Uptime:    {response.uptime_seconds:.1f}s")
        print(f"Rotation:  {'enabled' if response.rotation_enabled else 'disabled'}")
        print(f"Agents:    {response.agents_tracked}")
        print(f"Rotations: {response.rotations}")
        if response.agents_needing_rotation:
            print(f"Pending:   {', '.join(response.agents_needing_rotation)}")
        if response.error:
            print(f"Error:     {response.error}")
    elif args.command == "debug-dump":
        response = DebugDumpResponse.from_json(response_json)
        if response.status != ResponseStatus.OK:
            _fail(response.error)
        if args.raw:
            print(response.content, end="")
        else:
            print(f"# Debug log: {response.log_path} ({response.lines} lines)")
            print("# Tip: Use --raw | jq for JSON parsing")
            print()
            print(response.content, end="")
    elif args.command in ("agents", "rotate", "report") or (args.command == "history" and not args.clear):
        parsed = json.loads(response_json)
        if "data" not in parsed:
            _fail(SimpleResponse.from_json(response_json).error)
        response = DataResponse.from_json(response_json)
        if args.command == "agents":
            print(format_agents(response.data))
        elif args.command == "history":
            print(format_history(response.data))
        elif args.command == "rotate":
            print(response.message, end="")
            if response.status != ResponseStatus.OK:
                sys.exit(1)
        else:
            est = response.data
            print(f"{args.agent_id}: {est['usage_percent']:.1f}% ({est['tokens_used']}/{est['context_limit']})")
    else:
        response = SimpleResponse.from_json(response_json)
        if response.status != ResponseStatus.OK:
            _fail(response.error)
        print(response.message)


if __name__ == "__main__":
    main()
