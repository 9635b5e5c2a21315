from __future__ import annotations

import getpass
import logging
from typing import Any, Awaitable, Callable

from telethon import TelegramClient, events
from telethon.errors import SessionPasswordNeededError
from telethon.tl.types import PeerChannel, PeerChat, PeerUser

from .interfaces import IncomingMessage, NetworkMessage, PeerIdentity

logger = logging.getLogger(__name__)

MessageHandler = Callable[[IncomingMessage], Awaitable[None]]


def peer_identity_from_raw(raw_peer: Any) -> PeerIdentity | None:
    if isinstance(raw_peer, PeerUser):
        return PeerIdentity.user(raw_peer.user_id)
    if isinstance(raw_peer, PeerChat):
        return PeerIdentity.group(raw_peer.chat_id)
    if isinstance(raw_peer, PeerChannel):
        return PeerIdentity.group(raw_peer.channel_id)
    return None


class TelegramBridge:
    """Ingress and egress for the operator's own Telegram account (MTProto)."""

    def __init__(self, session_file: str, api_id: int, api_hash: str) -> None:
        self.client = TelegramClient(session_file, api_id, api_hash)
        self._handler: Callable | None = None

    async def connect(self) -> None:
        await self.client.connect()

    async def login(self, prompt: Callable[[str], str] = input) -> None:
        """Interactive sign-in: phone, code, then 2FA password if the account has one."""
        if await self.client.is_user_authorized():
            return

        logger.info("Not authorized, starting login flow")
        phone = prompt("Phone: ").strip()
        await self.client.send_code_request(phone)
        code = prompt("Code: ").strip()
        try:
            await self.client.sign_in(phone=phone, code=code)
        except SessionPasswordNeededError:
            password = getpass.getpass("2FA Password: ")
            await self.client.sign_in(password=password)
        logger.info("Signed in successfully!")

    async def get_me(self) -> int:
        me = await self.client.get_me()
        return int(me.id)

    def on_new_message(self, handler: MessageHandler) -> None:
        async def _on_event(event) -> None:
            peer = peer_identity_from_raw(event.message.peer_id)
            if peer is None:
                return
            await handler(IncomingMessage(peer=peer, text=event.raw_text or "", outgoing=bool(event.out)))

        self._handler = _on_event
        self.client.add_event_handler(_on_event, events.NewMessage())

    def stop_listening(self) -> None:
        if self._handler is not None:
            self.client.remove_event_handler(self._handler)
            self._handler = None

    async def resolve_peer(self, peer: PeerIdentity) -> Any:
        if peer.kind == "user":
            return await self.client.get_input_entity(PeerUser(peer.id))
        return await self.client.get_input_entity(PeerChat(peer.id))

    async def fetch_history(self, handle: Any, limit: int) -> list[NetworkMessage]:
        return [
            NetworkMessage(text=getattr(msg, "message", None) or "", outgoing=bool(msg.out))
            async for msg in self.client.iter_messages(handle, limit=limit)
        ]

    async def send_message(self, handle: Any, text: str) -> None:
        await self.client.send_message(handle, text)

    async def wait_disconnected(self) -> None:
        await self.client.disconnected

    async def disconnect(self) -> None:
        await self.client.disconnect()
