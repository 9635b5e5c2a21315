from __future__ import annotations

import logging

from telegram_orchestrator.config import prompts
from .bot_client import BotMessage, CallbackQuery, Update
from .callbacks import APPROVE, REJECT, REPHRASE, InvalidCallbackToken, callback_token, parse_callback_token
from .interfaces import ControlChannel, MessagingNetwork, PeerIdentity
from .pipeline import DraftPipeline
from .state import DraftNotFoundError, OrchestrationState, RephraseNotFoundError

logger = logging.getLogger(__name__)


class ApprovalStateMachine:
    """
    Drives drafts through the operator's decisions.

    State machine per target:
      - DRAFT_PENDING: bubble with buttons published, draft stored.
      - approve  -> SENT (draft sent to the contact, bubble shows the text)
      - rephrase -> AWAITING_GUIDANCE (next operator text regenerates)
      - reject   -> REJECTED (draft and context dropped)
    """

    def __init__(self, network: MessagingNetwork, state: OrchestrationState, pipeline: DraftPipeline) -> None:
        self.network = network
        self.state = state
        self.pipeline = pipeline

    @property
    def bot(self) -> ControlChannel:
        return self.state.bot_client

    async def dispatch(self, update: Update) -> None:
        if update.callback_query is not None:
            await self.handle_callback(update.callback_query)
        elif update.message is not None:
            await self.handle_operator_message(update.message)
        else:
            logger.debug("[APPROVAL] Ignoring update %s without a known payload", update.update_id)

    async def handle_callback(self, callback: CallbackQuery) -> None:
        logger.debug("[APPROVAL] Received callback: %s", callback.data)

        # Clears the loading indicator whatever happens next.
        await self.bot.answer_callback_query(callback.id)

        try:
            if callback.message is None:
                raise InvalidCallbackToken("Callback has no message attached")
            action, target_id = parse_callback_token(callback.data or "")

            if action == APPROVE:
                await self._approve(callback, target_id)
            elif action == REPHRASE:
                await self._request_guidance(callback, target_id)
            elif action == REJECT:
                await self._reject(callback, target_id)
            else:
                logger.info("[APPROVAL] Ignoring unknown callback action %r", action)
        except DraftNotFoundError as exc:
            logger.warning("[APPROVAL] %s", exc)
            await self._notify_operator(prompts.DRAFT_NOT_FOUND.format(target_id=target_id))
        except RephraseNotFoundError as exc:
            logger.warning("[APPROVAL] %s", exc)
            await self._notify_operator(prompts.REPHRASE_NOT_FOUND.format(target_id=target_id))
        except InvalidCallbackToken as exc:
            logger.warning("[APPROVAL] Rejected callback: %s", exc)
            await self._notify_operator(prompts.CALLBACK_FAILED.format(error=exc))

    async def _approve(self, callback: CallbackQuery, target_id: int) -> None:
        ref = callback.message
        draft = self.state.pop_draft(callback_token(APPROVE, target_id), message_id=ref.message_id)
        logger.info("[DECISION] Operator APPROVED for %s", draft.target_id)

        handle = await self.network.resolve_peer(PeerIdentity.user(draft.target_id))
        await self.network.send_message(handle, draft.text)

        await self.bot.edit_message_text(ref.chat_id, ref.message_id, prompts.escape_markdown(draft.text))

        self.state.discard_rephrase(draft.target_id)
        logger.info("[STATE] %s: DRAFT_PENDING -> SENT", draft.target_id)

    async def _request_guidance(self, callback: CallbackQuery, target_id: int) -> None:
        logger.info("[DECISION] Rephrase requested for %s", target_id)
        ref = callback.message
        self.state.current_rephrase(target_id, message_id=ref.message_id)
        await self.bot.edit_message_text(ref.chat_id, ref.message_id, prompts.REPHRASE_PROMPT)
        # The rephrase context stays: it carries the history into the next draft.
        logger.info("[STATE] %s: DRAFT_PENDING -> AWAITING_GUIDANCE", target_id)

    async def _reject(self, callback: CallbackQuery, target_id: int) -> None:
        logger.info("[DECISION] Operator REJECTED for %s", target_id)
        ref = callback.message
        if not self.state.discard_target(target_id, message_id=ref.message_id):
            logger.info("[APPROVAL] %s: rejected a replaced bubble, newer draft kept", target_id)
        else:
            logger.info("[STATE] %s: DRAFT_PENDING -> REJECTED", target_id)
        await self.bot.edit_message_text(ref.chat_id, ref.message_id, prompts.REJECTED_MARKER)

    async def handle_operator_message(self, message: BotMessage) -> None:
        text = message.text
        if not text:
            return

        if message.from_id != self.state.self_id:
            return

        targets = self.state.pending_rephrase_targets()
        if not targets:
            logger.debug("[APPROVAL] No pending rephrase requests, ignoring message")
            return

        # Single operator: the guidance applies to every pending target.
        for target_id in targets:
            logger.info("[DECISION] Operator GUIDANCE for %s: %s", target_id, text)
            try:
                await self._regenerate(target_id, text)
            except Exception as exc:
                logger.exception("[APPROVAL] Error regenerating with guidance for %s", target_id)
                await self.bot.send_message(message.chat_id, prompts.REGENERATE_FAILED.format(error=exc))

    async def _regenerate(self, target_id: int, guidance: str) -> None:
        pending = self.state.pop_rephrase(target_id)
        user = self.state.user_for_target(target_id)
        if user is None:
            raise LookupError(f"User not found for target_id {target_id}")

        logger.debug("[APPROVAL] Found user %s for rephrase, regenerating with guidance", user.name)
        await self.pipeline.produce_draft(
            PeerIdentity.user(target_id),
            user,
            guidance=guidance,
            history=pending.history,
        )

    async def _notify_operator(self, text: str) -> None:
        try:
            await self.bot.send_message(self.state.self_id, text)
        except Exception:
            logger.exception("[APPROVAL] Could not report error to operator")
