"""Command line entry point: run the relay, send a file or receive one."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import threading

from config import (
    DEFAULT_SAVE_DIR,
    LOG_FORMAT,
    LOG_LEVEL,
    RELAY_HOST,
    RELAY_PORT,
    TRANSFER_HOST,
    TRANSFER_PORT,
    relay_base_url,
)
from rendezvous.client import RelayClient
from rendezvous.server import RelayServer
from transfer.manager import TransferHandle, TransferManager
from transfer.models import FileMetadata, ProgressEvent, TransferState

logger = logging.getLogger(__name__)


def _format_size(num_bytes: int) -> str:
    if num_bytes < 1024:
        return f"{num_bytes} B"
    size = float(num_bytes)
    for unit in ("KB", "MB"):
        size /= 1024
        if size < 1024:
            return f"{size:.1f} {unit}"
    return f"{size / 1024:.1f} GB"


def _render(event: ProgressEvent) -> str | None:
    if event.state == TransferState.WAITING_FOR_RECEIVER:
        return f"Session ID: {event.session_id}  (waiting for receiver...)"
    if event.state in (TransferState.TRANSFERRING, TransferState.RECEIVING):
        total = f" / {_format_size(event.total_bytes)}" if event.total_bytes else ""
        percent = f" {event.progress_percent:5.1f}%" if event.total_bytes else ""
        return (
            f"\r{_format_size(event.bytes_moved)}{total}{percent}"
            f"  {event.speed:.2f} MB/s"
        )
    if event.state == TransferState.COMPLETED:
        return f"\nDone: {_format_size(event.bytes_moved)} at {event.speed:.2f} MB/s"
    if event.state == TransferState.CANCELLED:
        return f"\nCancelled: {event.error}" if event.error else "\nCancelled"
    if event.state == TransferState.ERROR:
        return f"\nError: {event.error}"
    return None


async def _follow(manager: TransferManager, handle: TransferHandle) -> int:
    """Print events until the transfer ends; Ctrl+C cancels it."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(
            signal.SIGINT, manager.cancel_transfer, handle.transfer_id
        )
    except (NotImplementedError, RuntimeError):
        pass

    last: ProgressEvent | None = None
    async for event in handle.events():
        last = event
        line = _render(event)
        if line is None:
            continue
        if line.startswith("\r"):
            sys.stdout.write(line)
            sys.stdout.flush()
        else:
            print(line)
    await handle.wait()

    if last is not None and last.state == TransferState.COMPLETED:
        return 0
    return 1


async def _send(args: argparse.Namespace) -> int:
    relay = RelayClient(relay_base_url(args.relay_host, args.relay_port))
    manager = TransferManager(relay=relay, transfer_port=args.port)
    handle = manager.start_send(args.file)
    return await _follow(manager, handle)


async def _receive(args: argparse.Namespace) -> int:
    relay = RelayClient(relay_base_url(args.relay_host, args.relay_port))
    manager = TransferManager(
        relay=relay,
        save_dir=args.save_dir,
        transfer_host=args.host,
        transfer_port=args.port,
    )

    async def ask(metadata: FileMetadata) -> bool:
        print(f"Incoming file: {metadata.name} ({_format_size(metadata.size)})")
        if args.yes:
            return True
        answer = await _prompt("Accept? [y/N] ")
        return answer.strip().lower() in ("y", "yes")

    handle = manager.start_receive(args.session_id, ask)
    code = await _follow(manager, handle)
    if code == 0 and handle.destination:
        print(f"Saved to {handle.destination}")
    return code


def _prompt(text: str) -> asyncio.Future:
    """Read one line from stdin without tying up the loop's executor.

    The reading thread is a daemon, so an unanswered prompt never keeps the
    process alive after the transfer was cancelled.
    """
    loop = asyncio.get_running_loop()
    answer: asyncio.Future = loop.create_future()

    def settle(line: str) -> None:
        if not answer.done():
            answer.set_result(line)

    def read() -> None:
        try:
            line = input(text)
        except EOFError:
            line = ""
        try:
            loop.call_soon_threadsafe(settle, line)
        except RuntimeError:
            # Loop already closed; nobody is waiting for the answer.
            pass

    threading.Thread(target=read, name="accept-prompt", daemon=True).start()
    return answer


async def _serve_relay(server: RelayServer, stop: asyncio.Event) -> int:
    await server.start()
    print(f"Relay listening on {server.host}:{server.port}")
    try:
        await stop.wait()
    finally:
        await server.stop()
    return 0


async def _relay(args: argparse.Namespace) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass
    return await _serve_relay(RelayServer(host=args.host, port=args.port), stop)


def cmd_relay(args: argparse.Namespace) -> int:
    return asyncio.run(_relay(args))


def cmd_send(args: argparse.Namespace) -> int:
    return asyncio.run(_send(args))


def cmd_receive(args: argparse.Namespace) -> int:
    return asyncio.run(_receive(args))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(
        prog="relaydrop", description="Send a file to a peer through a rendezvous relay."
    )
    p.add_argument("--log-level", default=LOG_LEVEL)
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_relay_address(x: argparse.ArgumentParser) -> None:
        x.add_argument("--relay-host", default=RELAY_HOST)
        x.add_argument("--relay-port", type=int, default=RELAY_PORT)

    relay = sub.add_parser("relay", help="run the rendezvous relay")
    relay.add_argument("--host", default=RELAY_HOST)
    relay.add_argument("--port", type=int, default=RELAY_PORT)
    relay.set_defaults(func=cmd_relay)

    send = sub.add_parser("send", help="offer a file and print its session ID")
    add_relay_address(send)
    send.add_argument("--port", type=int, default=TRANSFER_PORT)
    send.add_argument("file")
    send.set_defaults(func=cmd_send)

    recv = sub.add_parser("receive", help="receive the file offered under a session ID")
    add_relay_address(recv)
    recv.add_argument("--host", default=TRANSFER_HOST, help="sender address to dial")
    recv.add_argument("--port", type=int, default=TRANSFER_PORT)
    recv.add_argument("--save-dir", default=DEFAULT_SAVE_DIR)
    recv.add_argument("-y", "--yes", action="store_true", help="accept without asking")
    recv.add_argument("session_id")
    recv.set_defaults(func=cmd_receive)

    args = p.parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
