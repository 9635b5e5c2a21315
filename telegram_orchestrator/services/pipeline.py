from __future__ import annotations

import logging
from typing import Sequence

from telegram_orchestrator.config import prompts
from telegram_orchestrator.config.loader import TrackedUser
from .callbacks import APPROVE, REJECT, REPHRASE, callback_token
from .delegate import Delegate
from .interfaces import ChatMessage, MessagingNetwork, PeerIdentity
from .state import OrchestrationState

logger = logging.getLogger(__name__)


def build_system_prompt(base: str | None, user_prompt: str, guidance: str | None = None) -> str:
    prompt = ""
    if base:
        prompt += base + "\n\n"
    prompt += user_prompt
    if guidance:
        prompt += "\n\n" + prompts.GUIDANCE_PREFIX + guidance
    return prompt


def draft_buttons(target_id: int) -> list[list[tuple[str, str]]]:
    return [[
        (prompts.APPROVE_LABEL, callback_token(APPROVE, target_id)),
        (prompts.REPHRASE_LABEL, callback_token(REPHRASE, target_id)),
        (prompts.REJECT_LABEL, callback_token(REJECT, target_id)),
    ]]


class DraftPipeline:
    """History -> prompt -> generation -> bubble with buttons -> state.

    State is only touched after the bubble was published, so a failure at any
    step leaves the draft tables exactly as they were.
    """

    def __init__(
        self,
        network: MessagingNetwork,
        state: OrchestrationState,
        *,
        delegate: Delegate | None = None,
    ) -> None:
        self.network = network
        self.state = state
        self.delegate = delegate or Delegate.from_config(state.config.ai)

    async def fetch_history(self, peer: PeerIdentity) -> list[ChatMessage]:
        limit = self.state.config.settings.history_limit
        logger.debug("[PIPELINE] Fetching message history for peer %s", peer.id)

        handle = await self.network.resolve_peer(PeerIdentity.user(peer.id))
        newest_first = await self.network.fetch_history(handle, limit)

        history = [
            ChatMessage(role="assistant" if msg.outgoing else "user", content=msg.text)
            for msg in newest_first
            if msg.text
        ]
        history.reverse()
        return history

    async def produce_draft(
        self,
        peer: PeerIdentity,
        user: TrackedUser,
        *,
        guidance: str | None = None,
        history: Sequence[ChatMessage] | None = None,
    ) -> None:
        if history is None:
            history = await self.fetch_history(peer)

        if not history:
            logger.warning("[PIPELINE] No message history found for peer %s", peer.id)
            return

        logger.debug("[PIPELINE] Loaded %d messages from history", len(history))

        ai = self.state.config.ai
        system_prompt = build_system_prompt(ai.base_system_prompt, user.system_prompt, guidance)

        reply = await self.delegate.generate_reply(system_prompt, history)
        logger.info("[PIPELINE] Generated AI response for user %s", user.name)

        target_id = peer.id
        operator_id = self.state.self_id
        bubble = prompts.draft_bubble(user.name, reply, rephrased=guidance is not None)

        message_id = await self.state.bot_client.send_message_with_buttons(
            operator_id, bubble, draft_buttons(target_id)
        )

        self.state.record_draft(
            target_id,
            reply,
            control_chat_id=operator_id,
            control_message_id=message_id,
            history=history,
        )
        logger.info("[STATE] %s: -> DRAFT_PENDING (bubble %s)", user.name, message_id)
