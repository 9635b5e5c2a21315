"""Shared fakes: an in-memory messaging network, control channel and generator."""

from __future__ import annotations

import asyncio
from typing import Any, Iterable, Sequence

import pytest

from telegram_orchestrator.config.loader import AIConfig, Config, Settings, TelegramConfig, TrackedUser
from telegram_orchestrator.services.bot_client import BotApiError
from telegram_orchestrator.services.interfaces import ChatMessage, NetworkMessage, PeerIdentity

OPERATOR_ID = 777
ANN = TrackedUser(id=42, name="Ann", system_prompt="be terse")


class FakeNetwork:
    """Histories are stored newest first, the way the real network returns them."""

    def __init__(self, histories: dict[int, list[NetworkMessage]] | None = None) -> None:
        self.histories = histories or {}
        self.resolved: list[PeerIdentity] = []
        self.fetch_calls: list[tuple[Any, int]] = []
        self.sent: list[tuple[Any, str]] = []

    async def resolve_peer(self, peer: PeerIdentity) -> Any:
        self.resolved.append(peer)
        return peer.id

    async def fetch_history(self, handle: Any, limit: int) -> Sequence[NetworkMessage]:
        self.fetch_calls.append((handle, limit))
        return list(self.histories.get(handle, []))[:limit]

    async def send_message(self, handle: Any, text: str) -> None:
        self.sent.append((handle, text))

    async def get_me(self) -> int:
        return OPERATOR_ID


class FakeBot:
    def __init__(self, updates: Iterable[Any] = ()) -> None:
        self.next_message_id = 100
        self.bubbles: list[tuple[int, str, list]] = []
        self.messages: list[tuple[int, str]] = []
        self.edits: list[tuple[int, int, str]] = []
        self.answers: list[str] = []
        self.offsets: list[int | None] = []
        self._updates = list(updates)
        self.fail_publish = False

    async def send_message_with_buttons(self, chat_id: int, text: str, buttons) -> int:
        if self.fail_publish:
            raise BotApiError("Telegram API error: chat not found")
        self.next_message_id += 1
        self.bubbles.append((chat_id, text, [list(row) for row in buttons]))
        return self.next_message_id

    async def send_message(self, chat_id: int, text: str) -> int:
        self.next_message_id += 1
        self.messages.append((chat_id, text))
        return self.next_message_id

    async def edit_message_text(self, chat_id: int, message_id: int, text: str) -> None:
        self.edits.append((chat_id, message_id, text))

    async def answer_callback_query(self, callback_query_id: str, text: str | None = None) -> None:
        self.answers.append(callback_query_id)

    async def get_updates(self, offset: int | None = None) -> list:
        self.offsets.append(offset)
        if not self._updates:
            # Stand-in for the server holding the long poll.
            await asyncio.sleep(0.01)
            return []
        batch = self._updates.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch


class FakeDelegate:
    def __init__(self, *replies: str) -> None:
        self.replies = list(replies) or ["Hello!"]
        self.calls: list[tuple[str, list[ChatMessage]]] = []
        self.error: Exception | None = None

    async def generate_reply(self, system_prompt: str, history: Sequence[ChatMessage]) -> str:
        self.calls.append((system_prompt, list(history)))
        if self.error is not None:
            raise self.error
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]


def make_config(
    *,
    users: Sequence[TrackedUser] = (ANN,),
    debounce_seconds: float = 0.05,
    history_limit: int = 25,
    base_system_prompt: str | None = None,
) -> Config:
    return Config(
        telegram=TelegramConfig(api_id=1, api_hash="hash", bot_token="123:ABC"),
        ai=AIConfig(api_key="key", models=("model-a",), base_system_prompt=base_system_prompt),
        settings=Settings(debounce_seconds=debounce_seconds, history_limit=history_limit),
        users=tuple(users),
    )


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork({ANN.id: [NetworkMessage(text="hi", outgoing=False)]})


@pytest.fixture
def bot() -> FakeBot:
    return FakeBot()


@pytest.fixture
def delegate() -> FakeDelegate:
    return FakeDelegate("Hey Ann!")
