"""Shared orchestration state.

Everything the concurrent handlers share lives in :class:`OrchestrationState`
behind one ``threading.Lock``. Every method here is synchronous and only does
dict bookkeeping, so the lock can never be held across an ``await``. Callers
copy what they need out, release, and only then talk to the network.

Per target the tables encode the approval state:

  - no draft, no rephrase context: NoDraft (or Sent / Rejected)
  - draft + rephrase context: DraftPending / AwaitingGuidance
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Sequence

from telegram_orchestrator.config.loader import Config, TrackedUser
from .callbacks import APPROVE, callback_token
from .debounce import DebounceMap, Spawn
from .interfaces import ChatMessage, ControlChannel, PeerIdentity

logger = logging.getLogger(__name__)


class DraftNotFoundError(LookupError):
    """No draft for this callback token: already handled or replaced."""


class RephraseNotFoundError(LookupError):
    pass


@dataclass(frozen=True)
class Draft:
    target_id: int
    text: str


@dataclass(frozen=True)
class PendingRephrase:
    target_id: int
    control_chat_id: int
    control_message_id: int
    history: tuple[ChatMessage, ...]


class OrchestrationState:
    def __init__(self, config: Config, bot_client: ControlChannel, *, spawn: Spawn | None = None) -> None:
        self._lock = threading.Lock()
        self.config = config
        self.bot_client = bot_client
        self._users: dict[PeerIdentity, TrackedUser] = config.users_map()
        self._self_id: int | None = None
        self._drafts: dict[str, Draft] = {}
        self._pending_rephrase: dict[int, PendingRephrase] = {}
        self.debounce: DebounceMap[PeerIdentity] = DebounceMap(
            config.settings.debounce_seconds, lock=self._lock, spawn=spawn
        )

    # ------------------------------------------------------------------
    # Tracked users / operator identity
    # ------------------------------------------------------------------

    def tracked_user(self, peer: PeerIdentity) -> TrackedUser | None:
        with self._lock:
            return self._users.get(peer)

    def user_for_target(self, target_id: int) -> TrackedUser | None:
        return self.tracked_user(PeerIdentity.user(target_id))

    @property
    def self_id(self) -> int:
        with self._lock:
            if self._self_id is None:
                raise RuntimeError("Operator identity not resolved yet")
            return self._self_id

    def set_self_id(self, self_id: int) -> None:
        with self._lock:
            self._self_id = int(self_id)

    # ------------------------------------------------------------------
    # Drafts and rephrase contexts
    # ------------------------------------------------------------------

    def record_draft(
        self,
        target_id: int,
        text: str,
        *,
        control_chat_id: int,
        control_message_id: int,
        history: Sequence[ChatMessage],
    ) -> str:
        """Store a freshly published draft, replacing any older one for the target."""
        token = callback_token(APPROVE, target_id)
        with self._lock:
            replaced = token in self._drafts
            self._drafts[token] = Draft(target_id=target_id, text=text)
            self._pending_rephrase[target_id] = PendingRephrase(
                target_id=target_id,
                control_chat_id=control_chat_id,
                control_message_id=control_message_id,
                history=tuple(history),
            )
        if replaced:
            logger.info("[STATE] %s: older draft replaced", target_id)
        return token

    def get_draft(self, token: str) -> Draft | None:
        with self._lock:
            return self._drafts.get(token)

    def pop_draft(self, token: str, *, message_id: int | None = None) -> Draft:
        """Remove and return the draft behind ``token``.

        With ``message_id`` the press must come from the latest bubble of the
        target; buttons on bubbles that were replaced count as not found.
        """
        with self._lock:
            draft = self._drafts.get(token)
            if draft is not None and self._is_stale(draft.target_id, message_id):
                draft = None
            if draft is not None:
                del self._drafts[token]
        if draft is None:
            raise DraftNotFoundError(f"Draft message not found for {token}")
        return draft

    def _is_stale(self, target_id: int, message_id: int | None) -> bool:
        if message_id is None:
            return False
        pending = self._pending_rephrase.get(target_id)
        return pending is not None and pending.control_message_id != message_id

    def get_rephrase(self, target_id: int) -> PendingRephrase | None:
        with self._lock:
            return self._pending_rephrase.get(target_id)

    def current_rephrase(self, target_id: int, *, message_id: int | None = None) -> PendingRephrase:
        """Rephrase context of ``target_id``, as long as ``message_id`` is its latest bubble."""
        with self._lock:
            pending = self._pending_rephrase.get(target_id)
            if pending is not None and self._is_stale(target_id, message_id):
                pending = None
        if pending is None:
            raise RephraseNotFoundError(f"No pending rephrase for {target_id}")
        return pending

    def pop_rephrase(self, target_id: int) -> PendingRephrase:
        with self._lock:
            pending = self._pending_rephrase.pop(target_id, None)
        if pending is None:
            raise RephraseNotFoundError(f"No pending rephrase for {target_id}")
        return pending

    def discard_rephrase(self, target_id: int) -> None:
        with self._lock:
            self._pending_rephrase.pop(target_id, None)

    def discard_target(self, target_id: int, *, message_id: int | None = None) -> bool:
        """Forget both the draft and the rephrase context of a target.

        Returns False (and keeps everything) when ``message_id`` names a bubble
        that has already been replaced by a newer draft.
        """
        with self._lock:
            if self._is_stale(target_id, message_id):
                return False
            self._drafts.pop(callback_token(APPROVE, target_id), None)
            self._pending_rephrase.pop(target_id, None)
        return True

    def pending_rephrase_targets(self) -> list[int]:
        with self._lock:
            return list(self._pending_rephrase)
