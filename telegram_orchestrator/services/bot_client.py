"""
Bot API client - control channel between the orchestrator and the operator.

Only the handful of methods the approval workflow needs:

    bot = BotClient(token)
    message_id = await bot.send_message_with_buttons(chat_id, "Draft", [[("✅ Approve", "approve:42")]])
    await bot.edit_message_text(chat_id, message_id, "Sent")
    updates = await bot.get_updates(offset)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import httpx

from telegram_orchestrator.config import settings

logger = logging.getLogger(__name__)


class BotApiError(RuntimeError):
    """The Bot API rejected a call (ok=false, bad status or unreadable body)."""


class BotRateLimitError(BotApiError):
    """The Bot API answered 429."""


@dataclass(frozen=True)
class MessageRef:
    chat_id: int
    message_id: int


@dataclass(frozen=True)
class CallbackQuery:
    id: str
    from_id: int
    data: Optional[str] = None
    message: Optional[MessageRef] = None


@dataclass(frozen=True)
class BotMessage:
    message_id: int
    chat_id: int
    from_id: Optional[int]
    text: Optional[str] = None


@dataclass(frozen=True)
class Update:
    """One getUpdates entry. At most one of the payload fields is set."""

    update_id: int
    callback_query: Optional[CallbackQuery] = None
    message: Optional[BotMessage] = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Update":
        callback = None
        message = None

        cq = raw.get("callback_query")
        if isinstance(cq, dict):
            ref = None
            cq_msg = cq.get("message")
            if isinstance(cq_msg, dict):
                ref = MessageRef(chat_id=int(cq_msg["chat"]["id"]), message_id=int(cq_msg["message_id"]))
            callback = CallbackQuery(
                id=str(cq["id"]),
                from_id=int(cq["from"]["id"]),
                data=cq.get("data"),
                message=ref,
            )

        msg = raw.get("message")
        if isinstance(msg, dict):
            sender = msg.get("from")
            message = BotMessage(
                message_id=int(msg["message_id"]),
                chat_id=int(msg["chat"]["id"]),
                from_id=int(sender["id"]) if isinstance(sender, dict) else None,
                text=msg.get("text"),
            )

        return cls(update_id=int(raw["update_id"]), callback_query=callback, message=message)


class BotClient:
    """Thin async wrapper over the Telegram Bot API."""

    def __init__(
        self,
        token: str,
        *,
        base_url: str = settings.BOT_API_BASE_URL,
        timeout: float = settings.HTTP_TIMEOUT_SECONDS,
        poll_timeout: int = settings.GETUPDATES_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.poll_timeout = poll_timeout
        self._token = token
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _api_url(self, method: str) -> str:
        return f"{self.base_url}/bot{self._token}/{method}"

    async def _call(self, method: str, payload: dict[str, Any], *, timeout: float | None = None) -> Any:
        logger.debug("[BOT] %s", method)

        kwargs: dict[str, Any] = {"json": payload}
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            response = await self._client.post(self._api_url(method), **kwargs)
        except httpx.HTTPError as exc:
            raise BotApiError(f"{method}: request failed: {exc}") from exc

        if response.status_code == 429:
            logger.debug("[BOT] Bot API rate limit (429) reached: %s", response.text)
            raise BotRateLimitError(f"Bot API rate limit (429): {response.text}")

        try:
            body = response.json()
        except ValueError as exc:
            raise BotApiError(f"{method}: failed to parse response: {response.text[:200]}") from exc

        if not isinstance(body, dict):
            raise BotApiError(f"{method}: unexpected response: {response.text[:200]}")

        if not body.get("ok"):
            description = body.get("description") or "Unknown error"
            logger.debug("[BOT] Telegram API error on %s: %s", method, description)
            raise BotApiError(f"Telegram API error: {description}")

        return body.get("result")

    async def send_message_with_buttons(
        self,
        chat_id: int,
        text: str,
        buttons: Sequence[Sequence[tuple[str, str]]],
    ) -> int:
        keyboard = [
            [{"text": label, "callback_data": data} for label, data in row]
            for row in buttons
        ]
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "Markdown",
            "reply_markup": {"inline_keyboard": keyboard},
        }
        result = await self._call("sendMessage", payload)
        try:
            message_id = int(result["message_id"])
        except (TypeError, KeyError, ValueError) as exc:
            raise BotApiError("sendMessage: missing result in response") from exc

        logger.debug("[BOT] Sent message %s to chat %s", message_id, chat_id)
        return message_id

    async def send_message(self, chat_id: int, text: str) -> int:
        result = await self._call("sendMessage", {"chat_id": chat_id, "text": text})
        try:
            return int(result["message_id"])
        except (TypeError, KeyError, ValueError) as exc:
            raise BotApiError("sendMessage: missing result in response") from exc

    async def edit_message_text(self, chat_id: int, message_id: int, text: str) -> None:
        payload = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
            "parse_mode": "Markdown",
        }
        await self._call("editMessageText", payload)
        logger.debug("[BOT] Edited message %s in chat %s", message_id, chat_id)

    async def answer_callback_query(self, callback_query_id: str, text: str | None = None) -> None:
        payload: dict[str, Any] = {"callback_query_id": callback_query_id}
        if text is not None:
            payload["text"] = text
        await self._call("answerCallbackQuery", payload)
        logger.debug("[BOT] Answered callback query %s", callback_query_id)

    async def get_updates(self, offset: int | None = None) -> list[Update]:
        payload: dict[str, Any] = {"timeout": self.poll_timeout}
        if offset is not None:
            payload["offset"] = offset

        # The server holds the request for up to poll_timeout seconds.
        result = await self._call("getUpdates", payload, timeout=self.poll_timeout + 10)

        updates = []
        for raw in result or []:
            try:
                updates.append(Update.from_dict(raw))
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                update_id = raw.get("update_id") if isinstance(raw, dict) else None
                if not isinstance(update_id, int):
                    raise BotApiError(f"getUpdates: malformed update: {exc!r}") from exc
                # Keep the id so the offset still moves past it.
                logger.warning("[BOT] Skipping malformed update %s: %r", update_id, exc)
                updates.append(Update(update_id=update_id))
        if updates:
            logger.debug("[BOT] Received %d updates", len(updates))
        return updates
