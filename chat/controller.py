import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from chat.auth import AuthService, AuthUser
from chat.reconciler import ChangeHook, StreamReconciler, WriteFailureHook
from chat.relay_client import RelayClient
from chat.session_manager import SessionAccessError
from chat.state import AppState, ModelChoice, SessionRow, Settled
from chat.store import ChatStore

logger = logging.getLogger(__name__)

STORE_FAILURES = (SQLAlchemyError, SessionAccessError)


class ChatController:
    """Everything the chat screen does, minus the rendering.

    The application state lives from construction (or sign-in) until
    sign-out, when it is replaced with a fresh one.
    """

    def __init__(
        self,
        store: ChatStore,
        relay: RelayClient,
        auth: Optional[AuthService] = None,
        on_change: Optional[ChangeHook] = None,
        on_write_failure: Optional[WriteFailureHook] = None,
    ):
        self._store = store
        self._relay = relay
        self._auth = auth or AuthService(store)
        self._on_change = on_change
        self._on_write_failure = on_write_failure
        self._reset()

    def _reset(self) -> None:
        self.state = AppState()
        self.reconciler = StreamReconciler(
            self.state,
            self._store,
            self._relay,
            on_change=self._on_change,
            on_write_failure=self._on_write_failure,
        )

    # =========================
    # AUTH
    # =========================

    async def sign_up(self, login: str, password: str) -> AuthUser:
        user = await asyncio.to_thread(self._auth.sign_up, login, password)
        await self._start(user)
        return user

    async def sign_in(self, login: str, password: str) -> AuthUser:
        user = await asyncio.to_thread(self._auth.sign_in, login, password)
        await self._start(user)
        return user

    async def sign_out(self) -> None:
        self._auth.sign_out()
        self._reset()

    async def _start(self, user: AuthUser) -> None:
        self._reset()
        self.state.user_id = user.id
        self.state.user_email = user.email
        await self.refresh_sessions()

    # =========================
    # SESSIONS
    # =========================

    async def refresh_sessions(self) -> None:
        state = self.state
        if not state.user_id:
            return
        try:
            rows = await asyncio.to_thread(self._store.list_sessions, state.user_id)
        except STORE_FAILURES as e:
            logger.error("fetch sessions error: %s", e)
            return
        state.sessions = rows
        if not state.selected_session_id and rows:
            await self.select_session(rows[0].id)

    async def create_session(self, title: str = "") -> Optional[SessionRow]:
        state = self.state
        if not state.user_id:
            logger.warning("create_session called without a signed-in user")
            return None
        try:
            row = await asyncio.to_thread(self._store.create_session, state.user_id, title)
        except STORE_FAILURES as e:
            logger.error("Insert session error: %s", e)
            return None
        state.sessions.insert(0, row)
        state.transcripts[row.id] = []
        state.selected_session_id = row.id
        return row

    async def rename_session(self, session_id: str, title: str) -> bool:
        state = self.state
        title = title.strip()
        if not title or not state.user_id:
            return False
        try:
            row = await asyncio.to_thread(self._store.rename_session, state.user_id, session_id, title)
        except STORE_FAILURES as e:
            logger.error("rename error: %s", e)
            return False
        state.sessions = [row if s.id == session_id else s for s in state.sessions]
        return True

    async def delete_session(self, session_id: str) -> bool:
        state = self.state
        if not state.user_id:
            return False
        try:
            await asyncio.to_thread(self._store.delete_session, state.user_id, session_id)
        except STORE_FAILURES as e:
            logger.error("delete error: %s", e)
            return False
        state.sessions = [s for s in state.sessions if s.id != session_id]
        state.transcripts.pop(session_id, None)
        if state.selected_session_id == session_id:
            state.selected_session_id = None
        return True

    async def select_session(self, session_id: Optional[str]) -> None:
        state = self.state
        state.selected_session_id = session_id
        if not session_id or not state.user_id:
            return
        if state.is_in_flight(session_id):
            # the live transcript is ahead of the store until the send settles
            return
        try:
            rows = await asyncio.to_thread(self._store.list_messages, state.user_id, session_id)
        except STORE_FAILURES as e:
            logger.error("fetch messages error: %s", e)
            state.transcripts.setdefault(session_id, [])
            return
        state.transcripts[session_id] = rows

    # =========================
    # CHAT
    # =========================

    def set_model(self, choice: ModelChoice) -> None:
        self.state.model = ModelChoice(choice)

    async def send(self, text: str) -> Optional[Settled]:
        return await self.reconciler.send(text)
