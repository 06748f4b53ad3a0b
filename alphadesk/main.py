"""AlphaDesk CLI entrypoint.

Run the wake loop against real collaborators or the in-memory demo market::

    python -m alphadesk.main --mock --once     # one cycle, demo data, in-memory state
    python -m alphadesk.main                   # forever, collaborators from ALPHADESK_PROVIDER_FACTORY
    python -m alphadesk.main --status          # one cycle, then print the status snapshot
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import logging
import sys
from typing import Callable

from alphadesk import __version__
from alphadesk.config import Settings, get_settings
from alphadesk.llm_client import get_judge_client
from alphadesk.notify import CooldownNotifier, DiscordWebhookSink
from alphadesk.providers.base import Collaborators
from alphadesk.scheduler.controller import PhaseController
from alphadesk.scheduler.state import AgentState, MemoryStateStore, RedisStateStore, StateStore
from alphadesk.utils import setup_logging

logger = logging.getLogger("alphadesk")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="alphadesk",
        description=f"AlphaDesk v{__version__} - sentiment and alpha driven trading agent",
    )
    parser.add_argument("--mock", action="store_true", help="Use in-memory demo collaborators and state")
    parser.add_argument("--once", action="store_true", help="Run a single wake then exit")
    parser.add_argument("--status", action="store_true", help="Print the status snapshot after the run")
    parser.add_argument("--disable", action="store_true", help="Persist enabled=false and exit")
    parser.add_argument("--enable", action="store_true", help="Persist enabled=true and exit")
    parser.add_argument("--close", metavar="SYMBOL", help="Close one position (all symbol spellings) and exit")
    return parser


def _load_factory(path: str) -> Callable[[Settings], Collaborators]:
    """Resolve ``package.module:callable`` into the collaborator factory."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise SystemExit(f"ALPHADESK_PROVIDER_FACTORY must look like 'package.module:callable', got {path!r}")
    return getattr(importlib.import_module(module_name), attr)


def _collaborators(settings: Settings, mock: bool) -> Collaborators:
    if mock:
        from alphadesk.providers.mock import build_mock_collaborators

        collab = build_mock_collaborators()
    elif settings.provider_factory:
        collab = _load_factory(settings.provider_factory)(settings)
    else:
        raise SystemExit("No collaborators configured: set ALPHADESK_PROVIDER_FACTORY or pass --mock")

    if collab.judge is None:
        collab.judge = get_judge_client()
        if collab.judge is None:
            logger.warning("No LLM API key configured - judge research disabled")
    if collab.notifier is None and settings.discord_webhook_url:
        collab.notifier = DiscordWebhookSink(settings.discord_webhook_url)
    if collab.notifier is not None:
        collab.notifier = CooldownNotifier(collab.notifier)
    return collab


async def _run(args: argparse.Namespace) -> None:
    settings = get_settings()
    mock = args.mock or settings.mock_mode

    # demo runs trade from the first wake; a fresh Redis state waits for --enable
    store: StateStore = MemoryStateStore(AgentState(enabled=True)) if mock else RedisStateStore()
    controller = PhaseController(_collaborators(settings, mock), store, settings)

    try:
        if args.enable or args.disable:
            await controller.set_enabled(bool(args.enable))
            return
        if args.close:
            result = await controller.close_position(args.close, "cli")
            print(json.dumps(result))
            return

        logger.info("AlphaDesk v%s starting (mock=%s, once=%s)", __version__, mock, args.once)
        await controller.run(once=args.once or args.status)
        if args.status:
            print(json.dumps(controller.status(), indent=2, default=str))
    finally:
        await store.close()


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level)

    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        sys.exit(130)


if __name__ == "__main__":
    main()
