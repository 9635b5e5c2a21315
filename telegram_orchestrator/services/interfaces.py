from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence

USER = "user"
GROUP = "group"


@dataclass(frozen=True)
class PeerIdentity:
    kind: str  # 'user' | 'group'
    id: int

    @classmethod
    def user(cls, peer_id: int) -> "PeerIdentity":
        return cls(kind=USER, id=int(peer_id))

    @classmethod
    def group(cls, peer_id: int) -> "PeerIdentity":
        return cls(kind=GROUP, id=int(peer_id))


@dataclass(frozen=True)
class ChatMessage:
    role: str  # 'user' | 'assistant' | 'system'
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class IncomingMessage:
    peer: PeerIdentity
    text: str
    outgoing: bool = False


@dataclass(frozen=True)
class NetworkMessage:
    """One entry of a conversation history as returned by the network."""

    text: str
    outgoing: bool


class MessagingNetwork(Protocol):
    async def resolve_peer(self, peer: PeerIdentity) -> Any:
        """Turn a peer identity into a handle the other calls accept."""
        ...

    async def fetch_history(self, handle: Any, limit: int) -> Sequence[NetworkMessage]:
        """Most recent messages of the conversation, newest first."""
        ...

    async def send_message(self, handle: Any, text: str) -> None:
        """Send text into the conversation as the operator."""
        ...

    async def get_me(self) -> int:
        """Id of the operator's own account."""
        ...


class ControlChannel(Protocol):
    async def send_message_with_buttons(
        self,
        chat_id: int,
        text: str,
        buttons: Sequence[Sequence[tuple[str, str]]],
    ) -> int:
        """Send a Markdown message with inline buttons; returns its message id."""
        ...

    async def send_message(self, chat_id: int, text: str) -> int:
        """Send a plain-text message; returns its message id."""
        ...

    async def edit_message_text(self, chat_id: int, message_id: int, text: str) -> None:
        ...

    async def answer_callback_query(self, callback_query_id: str, text: str | None = None) -> None:
        ...
