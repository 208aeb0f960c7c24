"""
Stream reconciliation for one chat client.

A send goes ``Idle -> Sending -> Streaming -> Settled``. The user's turn is
appended locally before anything is written, a pending assistant placeholder
is appended under a temporary id, and every chunk the relay delivers
replaces the placeholder's content with the text received so far. All
mutations go to the transcript of the session that was selected when the
send started, whatever is selected by the time chunks arrive.
"""
import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from chat.relay_client import RelayClient
from chat.state import (
    ERROR_MARKER,
    AppState,
    MessageRow,
    Sending,
    Settled,
    Streaming,
)
from chat.store import ChatStore

logger = logging.getLogger(__name__)

ChangeHook = Callable[[str], None]
WriteFailureHook = Callable[[MessageRow, Exception], None]

class StreamReconciler:
    def __init__(
        self,
        state: AppState,
        store: ChatStore,
        relay: RelayClient,
        on_change: Optional[ChangeHook] = None,
        on_write_failure: Optional[WriteFailureHook] = None,
    ):
        self.state = state
        self._store = store
        self._relay = relay
        self._on_change = on_change
        self._on_write_failure = on_write_failure
        self._writes: Set[asyncio.Task] = set()

    async def send(self, text: str) -> Optional[Settled]:
        """Send ``text`` in the selected session and reconcile the streamed reply.

        Returns the settled state, or ``None`` when nothing was sent (no
        session, blank input, or a send already in flight for the session).
        """
        state = self.state
        session_id = state.selected_session_id
        user_id = state.user_id
        if not session_id or not user_id or not text.strip() or state.is_in_flight(session_id):
            return None

        model_id = state.model.model_id
        transcript = state.transcripts.setdefault(session_id, [])

        user_message = MessageRow(
            id=str(uuid.uuid4()),
            session_id=session_id,
            role="user",
            content=text,
            created_at=datetime.utcnow(),
        )
        transcript.append(user_message)
        state.sends[session_id] = Sending(session_id=session_id, user_message_id=user_message.id)
        self._changed(session_id)
        self._write_in_background(user_id, user_message)

        history = state.visible_history(session_id)
        temp_id = f"pending-{uuid.uuid4().hex}"
        transcript.append(
            MessageRow(id=temp_id, session_id=session_id, role="assistant", content="", pending=True)
        )
        state.sends[session_id] = Streaming(session_id=session_id, temp_id=temp_id)
        self._changed(session_id)

        try:
            buffer = await self._consume(session_id, temp_id, history, model_id)
        except Exception as e:
            # any read failure settles the send
            logger.error("AI error in session %s: %s: %s", session_id, type(e).__name__, e)
            return self._settle_error(session_id, temp_id)
        except asyncio.CancelledError:
            logger.info("Send in session %s cancelled mid-stream", session_id)
            self._settle_error(session_id, temp_id)
            raise

        self._update_placeholder(session_id, temp_id, pending=False)
        settled = Settled(session_id=session_id, temp_id=temp_id, outcome="success", buffer=buffer)
        try:
            if buffer:
                reply = MessageRow(
                    id=temp_id,
                    session_id=session_id,
                    role="assistant",
                    content=buffer,
                    created_at=datetime.utcnow(),
                )
                await self._write(user_id, reply)
        finally:
            state.sends[session_id] = settled
            self._changed(session_id)
        return settled

    async def flush_writes(self) -> None:
        """Wait for background writes still in flight."""
        while self._writes:
            await asyncio.gather(*list(self._writes))

    async def _consume(self, session_id: str, temp_id: str, history: List[Dict[str, str]], model_id: str) -> str:
        buffer = ""
        async for fragment in self._relay.stream(history, model_id):
            buffer += fragment
            self.state.sends[session_id] = Streaming(session_id=session_id, temp_id=temp_id, buffer=buffer)
            self._update_placeholder(session_id, temp_id, content=buffer)
        return buffer

    def _settle_error(self, session_id: str, temp_id: str) -> Settled:
        current = self.state.sends.get(session_id)
        buffer = current.buffer if isinstance(current, Streaming) else ""
        self._update_placeholder(session_id, temp_id, content=ERROR_MARKER, pending=False, failed=True)
        settled = Settled(session_id=session_id, temp_id=temp_id, outcome="error", buffer=buffer)
        self.state.sends[session_id] = settled
        self._changed(session_id)
        return settled

    def _update_placeholder(self, session_id: str, temp_id: str, **changes) -> None:
        transcript = self.state.transcripts.get(session_id)
        if transcript is None:
            # session was deleted or reloaded away while streaming
            return
        for i, message in enumerate(transcript):
            if message.id == temp_id:
                transcript[i] = replace(message, **changes)
                self._changed(session_id)
                return

    def _changed(self, session_id: str) -> None:
        if self._on_change is not None:
            self._on_change(session_id)

    def _write_in_background(self, user_id: str, message: MessageRow) -> None:
        task = asyncio.create_task(self._write(user_id, message))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _write(self, user_id: str, message: MessageRow) -> None:
        try:
            await asyncio.to_thread(
                self._store.add_message,
                user_id,
                message.session_id,
                message.role,
                message.content,
                message.created_at,
            )
        except Exception as e:
            # local state stays as it is; the next reload shows what the store has
            logger.error("Failed to persist %s message in session %s: %s", message.role, message.session_id, e)
            if self._on_write_failure is not None:
                self._on_write_failure(message, e)
