"""
Graffiti CLI — read, write and listen on GSOC graffiti feeds.

Commands:
  graffiti address - Show the SOC address of a resource id on the topic
  graffiti write   - Sign and upload a record
  graffiti read    - Fetch the latest record
  graffiti listen  - Print records pushed to the topic until interrupted
  graffiti mine    - Mine a resource id close to a Bee overlay address

Global options fall back to BEE_API_URL, GRAFFITI_CONSENSUS_ID and
GRAFFITI_POSTAGE.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys


def _add_resource_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-r", "--resource-id",
        default=None,
        help="Resource id (string, or 64 hex chars for a mined id; default: any)",
    )


def _resource_id(args: argparse.Namespace) -> str:
    from graffiti import DEFAULT_RESOURCE_ID

    return getattr(args, "resource_id", None) or DEFAULT_RESOURCE_ID


def _get_signal(args: argparse.Namespace):
    """Build an InformationSignal from CLI flags and environment."""
    from graffiti.config import SignalOptions, bee_url_from_env
    from graffiti.errors import GraffitiError
    from graffiti.signal import InformationSignal

    overrides = {}
    if getattr(args, "consensus_id", None):
        overrides["consensus_id"] = args.consensus_id
    if getattr(args, "postage", None):
        overrides["postage"] = args.postage

    try:
        return InformationSignal(
            getattr(args, "bee_url", None) or bee_url_from_env(),
            SignalOptions.from_env(**overrides),
        )
    except GraffitiError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _parse_record(text: str, as_json: bool):
    if not as_json:
        return text
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        print(f"Error: Message is not valid JSON: {e}", file=sys.stderr)
        sys.exit(1)


def cmd_address(args: argparse.Namespace) -> None:
    """Print the GSOC address of a resource id."""
    signal = _get_signal(args)
    address = signal.gsoc_address(_resource_id(args))
    print(address.hex())


def cmd_write(args: argparse.Namespace) -> None:
    """Sign and upload one record."""
    import asyncio
    from graffiti.errors import GraffitiError

    signal = _get_signal(args)
    record = _parse_record(args.message, args.json)

    try:
        soc = asyncio.run(signal.write(record, _resource_id(args)))
    except GraffitiError as e:
        print(f"Error: Write failed: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Wrote {len(soc.payload)} bytes")
    print(f"  address: {soc.address_hex}")
    print(f"  owner:   {soc.owner.hex()}")


def cmd_read(args: argparse.Namespace) -> None:
    """Fetch and print the latest record."""
    import asyncio
    from graffiti.errors import GraffitiError

    signal = _get_signal(args)

    try:
        data = asyncio.run(signal.read(_resource_id(args), verify=args.verify or None))
    except GraffitiError as e:
        print(f"Error: Read failed: {e}", file=sys.stderr)
        sys.exit(1)

    if args.raw:
        sys.stdout.buffer.write(bytes(data))
        return
    try:
        value = data.json()
    except ValueError:
        print(data.text())
        return
    print(value if isinstance(value, str) else json.dumps(value))


class _PrintHandler:
    """Prints records and errors of a running subscription."""

    def __init__(self, limit: int | None = None) -> None:
        self.limit = limit
        self.received = 0
        self.done = None

    def on_message(self, record) -> None:
        print(record if isinstance(record, str) else json.dumps(record), flush=True)
        self.received += 1
        if self.limit and self.received >= self.limit and self.done is not None:
            self.done.set()

    def on_error(self, error: Exception) -> None:
        print(f"Error: {error}", file=sys.stderr, flush=True)


def cmd_listen(args: argparse.Namespace) -> None:
    """Print records pushed to the topic until interrupted."""
    import asyncio

    signal = _get_signal(args)
    handler = _PrintHandler(limit=args.count)

    async def _listen() -> None:
        handler.done = asyncio.Event()
        sub = signal.subscribe(handler, _resource_id(args))
        print(f"Listening on {sub.gsoc_address.hex()} (Ctrl+C to stop)", file=sys.stderr)

        closed = asyncio.ensure_future(sub.wait_closed())
        done = asyncio.ensure_future(handler.done.wait())
        try:
            await asyncio.wait([closed, done], return_when=asyncio.FIRST_COMPLETED)
        finally:
            done.cancel()
            sub.close()
            await sub.wait_closed()

    try:
        asyncio.run(_listen())
    except KeyboardInterrupt:
        print("\nStopped.", file=sys.stderr)


def cmd_mine(args: argparse.Namespace) -> None:
    """Mine a resource id whose GSOC lands near a Bee overlay."""
    from graffiti.errors import GraffitiError

    signal = _get_signal(args)

    overlay = args.overlay
    if not overlay:
        from graffiti.bee.client import BeeClient

        try:
            overlay = BeeClient(signal.bee_url).get_node_addresses()["overlay"]
        except (GraffitiError, KeyError) as e:
            print(f"Error: Could not fetch node overlay: {e}", file=sys.stderr)
            sys.exit(1)

    try:
        result = signal.mine(overlay, args.depth)
    except GraffitiError as e:
        print(f"Error: Mining failed: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nMining interrupted.", file=sys.stderr)
        sys.exit(1)

    print(f"Mined resource id after {result.iterations} candidates")
    print(f"  resource id: {result.resource_id_hex}")
    print(f"  address:     {result.address.hex()}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="graffiti",
        description="Graffiti feeds — shared-key GSOC messaging on Swarm.",
    )
    from graffiti import __version__
    parser.add_argument("--version", action="version", version=f"graffiti {__version__}")
    parser.add_argument("--bee-url", help="Bee API URL (or set BEE_API_URL)")
    parser.add_argument("--consensus-id", help="Consensus id (or set GRAFFITI_CONSENSUS_ID)")
    parser.add_argument("--postage", help="Postage batch id or stamp (or set GRAFFITI_POSTAGE)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # address
    p_addr = sub.add_parser("address", help="Show the GSOC address of a resource id")
    _add_resource_arg(p_addr)

    # write
    p_write = sub.add_parser("write", help="Sign and upload a record")
    p_write.add_argument("message", help="Record to write")
    p_write.add_argument("--json", action="store_true", help="Parse message as JSON")
    _add_resource_arg(p_write)

    # read
    p_read = sub.add_parser("read", help="Fetch the latest record")
    p_read.add_argument("--verify", action="store_true", help="Verify the chunk signature")
    p_read.add_argument("--raw", action="store_true", help="Write raw payload bytes to stdout")
    _add_resource_arg(p_read)

    # listen
    p_listen = sub.add_parser("listen", help="Print records pushed to the topic")
    p_listen.add_argument("-n", "--count", type=int, help="Stop after this many records")
    _add_resource_arg(p_listen)

    # mine
    p_mine = sub.add_parser("mine", help="Mine a resource id near a Bee overlay")
    p_mine.add_argument("depth", type=int, help="Required proximity in bits (0-32)")
    p_mine.add_argument("--overlay", help="Target overlay address (default: the node's own)")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    commands = {
        "address": cmd_address,
        "write": cmd_write,
        "read": cmd_read,
        "listen": cmd_listen,
        "mine": cmd_mine,
    }

    commands[args.command](args)


if __name__ == "__main__":
    main()
