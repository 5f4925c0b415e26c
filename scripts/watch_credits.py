#!/usr/bin/env python3
"""Watch the credit replica of one user.

Starts a session for ``--user``, prints the replica once it is ready and
then every change delivered by the change feed.  With ``--debit N`` the
script also spends N credits, one billable action at a time.

Configuration comes from ``CREDITSYNC_*`` environment variables.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import time
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from creditsync import CreditSyncClient, Notice, SyncConfig  # noqa: E402
from creditsync._constants import CREDITS_PER_PERIOD  # noqa: E402
from creditsync.publisher import read_published  # noqa: E402

_LOG = logging.getLogger("watch_credits")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Watch a user's subscription credits.")
    parser.add_argument("--user", required=True, help="User id to watch.")
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--debit",
        type=int,
        default=0,
        help="Spend this many credits after initialization.",
    )
    parser.add_argument(
        "--no-feed",
        action="store_true",
        help="Disable the MQTT change feed.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    return parser.parse_args()


def _print_notice(notice: Notice) -> None:
    print(f"[watch] notice ({notice.variant}): {notice.title} - {notice.description}")


async def _watch(args: argparse.Namespace) -> int:
    overrides = {"mqtt_enabled": False} if args.no_feed else {}
    config = SyncConfig.from_env(**overrides)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows
            pass

    async with CreditSyncClient(config, on_notice=_print_notice) as client:
        replica = await client.start(args.user)
        language = replica.preferred_language.label
        print(f"[watch] ready: {replica.credits} / {CREDITS_PER_PERIOD} credits, language={language}")
        print(f"[watch] access: {client.access_state()}")

        for _ in range(args.debit):
            outcome = await client.on_billable_action_completed()
            print(f"[watch] debit {outcome}: {client.get_replica().credits} credits left")

        started = time.monotonic()
        last = read_published()
        while not stop.is_set():
            if args.duration and time.monotonic() - started >= args.duration:
                break
            try:
                await asyncio.wait_for(stop.wait(), timeout=0.5)
            except TimeoutError:
                pass
            current = read_published()
            if current != last:
                credits = f"{current.credits} / {CREDITS_PER_PERIOD}"
                print(f"[watch] change: credits={credits} language={current.preferred_language}")
                last = current
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_watch(args))
    except Exception as exc:  # pragma: no cover - network/system interaction
        _LOG.debug("Watch failed", exc_info=True)
        print(f"[watch] failed: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(_main())
