from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Coroutine

from telegram_orchestrator.config import settings
from telegram_orchestrator.config.loader import Config, ConfigError, load_config
from telegram_orchestrator.services.approval import ApprovalStateMachine
from telegram_orchestrator.services.bot_client import BotApiError, BotClient
from telegram_orchestrator.services.delegate import Delegate
from telegram_orchestrator.services.instance_lock import InstanceAlreadyRunning, acquire_instance_lock
from telegram_orchestrator.services.interfaces import IncomingMessage, MessagingNetwork, PeerIdentity
from telegram_orchestrator.services.pipeline import DraftPipeline
from telegram_orchestrator.services.state import OrchestrationState

logger = logging.getLogger(__name__)


def _configure_logging(*, debug: bool = False, trace: bool = False) -> None:
    settings.LOG_DIR.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    if not any(isinstance(h, logging.FileHandler) for h in root_logger.handlers):
        level = getattr(logging, settings.LOG_LEVEL, logging.INFO)
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            handlers=[
                logging.FileHandler(settings.LOG_FILE, encoding="utf-8"),
                logging.StreamHandler(),
            ],
        )

    if debug or trace:
        logging.getLogger("telegram_orchestrator").setLevel(logging.DEBUG)

    # httpx logs full request URLs at INFO, and Bot API URLs carry the token.
    third_party = logging.DEBUG if trace else logging.WARNING
    for name in ("httpx", "httpcore", "telethon"):
        logging.getLogger(name).setLevel(third_party)


def _log_safe(text: str) -> str:
    """Render control characters as escapes so inbound text cannot forge log lines."""
    return "".join(ch if ch.isprintable() else repr(ch)[1:-1] for ch in text)


class Orchestrator:
    """
    Wires the network, the control channel and the draft engine together.

    Every inbound network message and every control-channel update runs in its
    own task; their failures are logged and dropped. All tasks are tracked so
    shutdown can wait for in-flight work.
    """

    def __init__(
        self,
        config: Config,
        network: MessagingNetwork,
        bot_client: BotClient,
        *,
        delegate: Delegate | None = None,
    ) -> None:
        self.network = network
        self.bot_client = bot_client
        self._tasks: set[asyncio.Task] = set()
        self.state = OrchestrationState(config, bot_client, spawn=self.spawn)
        self.pipeline = DraftPipeline(network, self.state, delegate=delegate)
        self.approval = ApprovalStateMachine(network, self.state, self.pipeline)
        self.update_offset: int | None = None

    def spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def _log_errors(self, coro: Coroutine, context: str) -> None:
        try:
            await coro
        except Exception:
            logger.exception("Error handling %s", context)

    # ------------------------------------------------------------------
    # Network side
    # ------------------------------------------------------------------

    async def receive(self, msg: IncomingMessage) -> None:
        """Entry point for the network event handler."""
        self.spawn(self._log_errors(self.handle_incoming(msg), "update"))

    async def handle_incoming(self, msg: IncomingMessage) -> None:
        logger.debug("Message from peer (%s): %s", msg.peer.id, _log_safe(msg.text))

        user = self.state.tracked_user(msg.peer)
        if user is None:
            return

        logger.debug("[DEBOUNCE] Message from tracked user %s (%s)", user.name, msg.peer.id)
        self.state.debounce.schedule(msg.peer, lambda: self._on_silence(msg.peer))

    async def _on_silence(self, peer: PeerIdentity) -> None:
        user = self.state.tracked_user(peer)
        if user is None:
            return
        logger.info("Silence detected for %s (%s). Generating draft...", user.name, peer.id)
        await self.pipeline.produce_draft(peer, user)

    # ------------------------------------------------------------------
    # Control-channel side
    # ------------------------------------------------------------------

    async def poll_once(self) -> int:
        """One getUpdates round; every update is handled in its own task."""
        updates = await self.bot_client.get_updates(self.update_offset)
        for update in updates:
            self.update_offset = update.update_id + 1
            self.spawn(self._log_errors(self.approval.dispatch(update), f"bot update {update.update_id}"))
        return len(updates)

    async def poll_control_channel(self) -> None:
        logger.info("Started bot updates polling task")
        while True:
            try:
                await self.poll_once()
            except BotApiError as exc:
                logger.error("Bot updates polling error: %s", exc)
                await asyncio.sleep(settings.POLL_ERROR_BACKOFF_SECONDS)

    async def drain(self) -> None:
        """Wait until every tracked task (including ones spawned meanwhile) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def _wait_for_shutdown(disconnected: Coroutine) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows: Ctrl+C still arrives as KeyboardInterrupt.
            pass

    waiters = {asyncio.ensure_future(stop.wait()), asyncio.ensure_future(disconnected)}
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()

    if stop.is_set():
        logger.info("Received interrupt, shutting down...")
    else:
        logger.warning("Telegram connection closed, shutting down...")


async def _run_main_loop(config: Config) -> None:
    from telegram_orchestrator.services.bridge import TelegramBridge

    bridge = TelegramBridge(config.settings.session_file, config.telegram.api_id, config.telegram.api_hash)
    bot_client = BotClient(config.telegram.bot_token)

    logger.info("Connecting to Telegram...")
    await bridge.connect()
    try:
        await bridge.login()

        orchestrator = Orchestrator(config, bridge, bot_client)
        self_id = await bridge.get_me()
        orchestrator.state.set_self_id(self_id)
        logger.info("Running as self user (ID: %s)", self_id)

        bridge.on_new_message(orchestrator.receive)
        poller = asyncio.create_task(orchestrator.poll_control_channel())
        logger.info("Bot is ready and listening for updates")

        try:
            await _wait_for_shutdown(bridge.wait_disconnected())
        finally:
            bridge.stop_listening()
            poller.cancel()
            await asyncio.gather(poller, return_exceptions=True)
            if orchestrator.in_flight:
                logger.info("Waiting for %d in-flight tasks...", orchestrator.in_flight)
            await orchestrator.drain()
    finally:
        await bot_client.aclose()
        await bridge.disconnect()


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="telegram-orchestrator",
        description="AI-powered Telegram message assistant",
    )
    parser.add_argument("-c", "--config", default=str(settings.CONFIG_PATH), help="Path to configuration file")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("-t", "--trace", action="store_true", help="Also log Telethon and HTTP internals")
    return parser.parse_args(argv)


def run(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    _configure_logging(debug=args.debug, trace=args.trace)

    logger.info("Starting telegram orchestrator...")

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        logger.error("Failed to load config from %s: %s", args.config, exc)
        return 1

    logger.info("Loaded configuration with %d tracked users", len(config.users))

    try:
        with acquire_instance_lock(config.settings.session_file):
            asyncio.run(_run_main_loop(config))
    except InstanceAlreadyRunning as exc:
        logger.error(str(exc))
        return 1
    except KeyboardInterrupt:
        logger.info("Orchestrator stopped by user.")

    logger.info("Shutting down...")
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
