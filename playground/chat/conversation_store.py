"""
Conversation Store

Owns the active chat session and its message list:
- Send: user turn + assistant placeholder, streamed in place
- Edit: before-snapshot, truncate, regenerate, after-snapshot
- Version navigation over the session's snapshot log
- Session create/select/delete against the session repository

At most one stream runs at a time. Mutating operations are rejected unless
the store is idle; the message list is replaced (never mutated) on every
update so subscribers holding the old list see a consistent value.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

from playground.chat.delta_accumulator import DeltaAccumulator
from playground.chat.logging_utils import log_llm_reply
from playground.chat.models import ChatRequest, Direction, StoreEvent, StoreEventKind, StreamState
from playground.chat.streaming_handler import ChatTransport, StreamSession
from playground.chat.version_history import VersionHistory
from playground.errors import ChatValidationError, PlaygroundError, StreamReadError
from playground.history.models import ChatSession, Message, build_user_message, version_patch
from playground.history.repository import SessionRepository, apply_patch

logger = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "New Chat"
DEFAULT_PARAMS: dict[str, Any] = {
    "temperature": 0.7,
    "max_tokens": 16384,  # Room for thinking models
    "top_p": 1,
    "reasoning_effort": "none",
}

StoreCallback = Callable[[StoreEvent], None]


def derive_title(text: str, max_length: int = 40) -> str:
    """Session title from the first user input, with an ellipsis when truncated."""
    text = text.strip()
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


class ConversationStore:
    """Canonical message list for the active session."""

    def __init__(
        self,
        transport: ChatTransport,
        repo: SessionRepository,
        history: VersionHistory | None = None,
        *,
        default_model: str = "",
        default_params: dict[str, Any] | None = None,
        title_max_length: int = 40,
    ):
        self.transport = transport
        self.repo = repo
        self.history = history or VersionHistory()
        self.default_model = default_model
        self.default_params = {**DEFAULT_PARAMS, **(default_params or {})}
        self.title_max_length = title_max_length

        self.model = default_model
        self.params = dict(self.default_params)

        self._session: ChatSession | None = None
        self._messages: list[Message] = []
        self._state = StreamState.IDLE
        self._stream: StreamSession | None = None
        self._abort_pending = False
        self._settled = asyncio.Event()
        self._settled.set()
        self._callbacks: list[StoreCallback] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def session(self) -> ChatSession | None:
        return self._session

    @property
    def messages(self) -> list[Message]:
        return self._messages

    @property
    def state(self) -> StreamState:
        if self._stream is not None:
            return self._stream.state
        return self._state

    @property
    def can_mutate(self) -> bool:
        # Busy until the exchange settles, final repository write included
        return self._settled.is_set() and not self.state.is_active

    @property
    def can_go_back(self) -> bool:
        return self._session is not None and self.history.can_go_back(self._session.version_log)

    @property
    def can_go_forward(self) -> bool:
        return self._session is not None and self.history.can_go_forward(self._session.version_log)

    def subscribe(self, callback: StoreCallback) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unsubscribe(self, callback: StoreCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _emit(self, kind: StoreEventKind, session_id: str | None = None, **fields: Any) -> None:
        if session_id is None and self._session is not None:
            session_id = self._session.id
        event = StoreEvent(kind=kind, session_id=session_id, **fields)
        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in store subscriber for {kind} event: {e}")

    def _set_messages(self, messages: Sequence[Message]) -> None:
        self._messages = list(messages)
        self._emit("messages", messages=self._messages)

    def _replace_tail(self, message: Message) -> None:
        self._set_messages([*self._messages[:-1], message])

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _require_idle(self, operation: str) -> None:
        if not self.can_mutate:
            logger.warning("Rejected %s while an exchange is in progress (%s)", operation, self.state.value)
            raise ChatValidationError(f"Cannot {operation} while a response is in progress")

    def _activate(self, session: ChatSession | None) -> None:
        self._session = session
        if session is None:
            self.model = self.default_model
            self.params = dict(self.default_params)
            self._set_messages([])
        else:
            self.model = session.model or self.default_model
            self.params = {**self.default_params, **session.params}
            self._set_messages(session.messages)
        self._emit("session")

    async def load(self) -> list[ChatSession]:
        """Load stored sessions and activate the most recently used one."""
        sessions = await self.repo.list_sessions()
        logger.info("← Repository: loaded %d session(s)", len(sessions))
        self._activate(sessions[0] if sessions else None)
        return sessions

    async def list_sessions(self) -> list[ChatSession]:
        return await self.repo.list_sessions()

    async def new_session(self, name: str = DEFAULT_SESSION_NAME) -> ChatSession:
        self._require_idle("start a new session")
        session = await self.repo.create_session(name, self.default_model, dict(self.default_params))
        self._activate(session)
        self._emit("sessions")
        return session

    async def select_session(self, session_id: str) -> bool:
        self._require_idle("switch sessions")
        session = await self.repo.get_session(session_id)
        if session is None:
            logger.warning("Session %s not found", session_id)
            return False
        self._activate(session)
        return True

    async def delete_session(self, session_id: str) -> bool:
        """
        Delete a session. Deleting the active one aborts its stream and falls
        back to the most recently used remaining session, or the empty state.
        """
        is_active = self._session is not None and self._session.id == session_id
        if is_active and not self.can_mutate:
            self.abort()
            await self._settled.wait()

        deleted = await self.repo.delete_session(session_id)
        if not deleted:
            return False

        logger.info("← Repository: deleted session %s", session_id)
        # Owners release any attachment URLs held for this session
        self._emit("session_deleted", session_id=session_id)

        if is_active:
            remaining = await self.repo.list_sessions()
            self._activate(remaining[0] if remaining else None)
        self._emit("sessions")
        return True

    async def _persist(self, patch: dict[str, Any]) -> None:
        if self._session is None:
            return
        logger.debug("→ Repository: updating session %s (%s)", self._session.id, ", ".join(sorted(patch)))
        updated = await self.repo.update_session(self._session.id, patch)
        self._session = updated if updated is not None else apply_patch(self._session, patch)
        if {"versions", "version_index"} & patch.keys():
            self._emit("versions")

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def abort(self) -> None:
        """Abort the active exchange, if any. It fails with StreamAbortedError."""
        if self._stream is not None:
            self._stream.abort()
        elif self._state.is_active:
            # Reserved but the stream is not created yet
            self._abort_pending = True

    async def send(self, text: str, images: list[str] | None = None) -> bool:
        """
        Append a user turn and stream the assistant reply.

        Args:
            text: User input (may be empty when images are attached)
            images: Ordered image URLs (data URLs or remote URLs)

        Returns:
            True when the reply completed and was persisted

        Raises:
            ChatValidationError: If a stream is active or the input is empty
        """
        self._require_idle("send")
        images = list(images or [])
        if not text.strip() and not images:
            raise ChatValidationError("Cannot send an empty message")

        self._reserve()
        try:
            if self._session is None:
                session = await self.repo.create_session(DEFAULT_SESSION_NAME, self.model, self.params)
                self._session = session
                self._emit("session")
                self._emit("sessions")

            is_first_exchange = not self._session.messages
            user_message = build_user_message(text, images)
            if images:
                self._emit("attachments_consumed", attachments=images)

            final = await self._generate([*self._messages, user_message])
            if final is None:
                return False

            patch: dict[str, Any] = {"messages": final, "model": self.model, "params": self.params}
            if is_first_exchange and text.strip():
                patch["name"] = derive_title(text, self.title_max_length)
            await self._persist(patch)
            if "name" in patch:
                self._emit("sessions")
            return True
        finally:
            self._settle()

    async def edit(self, index: int, new_text: str) -> bool:
        """
        Replace the user message at ``index`` and regenerate from there.

        The full current list is recorded as the before-snapshot; on success
        the regenerated list is recorded as the after-snapshot and the cursor
        moves onto it.

        Raises:
            ChatValidationError: If a stream is active, the index is out of
                range, the target is not a user message, or the text is empty
        """
        self._require_idle("edit")
        if self._session is None:
            raise ChatValidationError("No active session to edit")
        if not 0 <= index < len(self._messages):
            raise ChatValidationError(f"Message index {index} out of range")

        target = self._messages[index]
        if target.role != "user":
            raise ChatValidationError("Only user messages can be edited")
        kept_images = [part.image_url.url for part in target.images]
        if not new_text.strip() and not kept_images:
            raise ChatValidationError("Edited message cannot be empty")

        self._reserve()
        try:
            before_log = self.history.record_before(self._session.version_log, self._messages, index)
            await self._persist(version_patch(before_log))

            edited = build_user_message(new_text, kept_images)
            final = await self._generate([*self._messages[:index], edited])
            if final is None:
                return False

            after_log = self.history.record_after(before_log, final, index)
            await self._persist({"messages": final, **version_patch(after_log)})
            return True
        finally:
            self._settle()

    async def navigate(self, direction: Direction | int) -> bool:
        """Move the version cursor one step and show that snapshot."""
        self._require_idle("navigate versions")
        if self._session is None:
            return False

        result = self.history.navigate(self._session.version_log, Direction(direction))
        if result is None:
            return False

        log, messages = result
        self._set_messages(messages)
        await self._persist({"messages": messages, **version_patch(log)})
        return True

    def _reserve(self) -> None:
        # Claims the store before the first await so a second caller is rejected
        self._state = StreamState.REQUESTING
        self._abort_pending = False
        self._settled.clear()

    def _settle(self) -> None:
        if self._stream is not None:
            self._state = self._stream.state
            self._stream = None
        if self._state.is_active:
            self._state = StreamState.IDLE
        self._abort_pending = False
        self._settled.set()

    async def _generate(self, history: list[Message]) -> list[Message] | None:
        """Stream a reply to ``history``. Returns the final list, or None on failure."""
        self._set_messages([*history, Message(role="assistant", content="", reasoning="")])
        accumulator = DeltaAccumulator()

        def on_chunk(record: dict[str, Any]) -> None:
            content, reasoning = accumulator.add(record)
            self._replace_tail(Message(role="assistant", content=content, reasoning=reasoning))

        request = ChatRequest.build(self.model, history, self.params)
        stream = StreamSession(self.transport, request, on_chunk=on_chunk)
        self._stream = stream
        if self._abort_pending:
            stream.abort()

        try:
            await stream.run()
        except asyncio.CancelledError:
            self._replace_tail(self._failure_message(stream.error, accumulator))
            raise

        if stream.state is not StreamState.COMPLETED:
            self._replace_tail(self._failure_message(stream.error, accumulator))
            return None

        final = [*history, accumulator.to_message()]
        self._set_messages(final)
        log_llm_reply(
            {
                "content": accumulator.content,
                "reasoning": accumulator.reasoning,
                "model": self.model,
                "chunks": accumulator.chunk_count,
                "finish_reason": accumulator.finish_reason,
            },
            "Streaming response",
        )
        return final

    @staticmethod
    def _failure_message(error: PlaygroundError | None, accumulator: DeltaAccumulator) -> Message:
        reason = str(error) if error is not None else "Unknown error"
        if isinstance(error, StreamReadError):
            # Partial output already shown stays; the marker goes after it
            content = f"{accumulator.content}\n\n[Error: {reason}]" if accumulator.content else f"[Error: {reason}]"
            return Message(role="assistant", content=content, reasoning=accumulator.reasoning)
        return Message(role="assistant", content=f"Error: {reason}", reasoning="")
