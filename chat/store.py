from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from chat import session_manager
from chat.state import MessageRow, SessionRow
from db.database import SessionLocal, engine, init_db
from db.models import Message, Session as SessionModel, User


def _session_row(row: SessionModel) -> SessionRow:
    return SessionRow(id=row.id, user_id=row.user_id, title=row.title, created_at=row.created_at)


def _message_row(row: Message) -> MessageRow:
    return MessageRow(
        id=row.id,
        session_id=row.session_id,
        role=row.role,
        content=row.content,
        created_at=row.created_at,
    )


class ChatStore:
    """Owner-scoped access to users, sessions and messages.

    Each call opens its own database session, so a store can be shared by the
    event loop and the worker threads the client runs blocking calls in.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        if session_factory is None:
            init_db(engine)
            session_factory = SessionLocal
        self._session_factory = session_factory

    @contextmanager
    def _db(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # users

    def create_user(self, email: str, password_hash: str) -> User:
        with self._db() as db:
            return session_manager.create_user(db, email, password_hash)

    def find_user(self, email: str) -> Optional[User]:
        with self._db() as db:
            return session_manager.get_user_by_email(db, email)

    # sessions

    def list_sessions(self, user_id: str) -> List[SessionRow]:
        with self._db() as db:
            return [_session_row(s) for s in session_manager.list_sessions(db, user_id)]

    def create_session(self, user_id: str, title: Optional[str] = None) -> SessionRow:
        with self._db() as db:
            return _session_row(session_manager.create_session(db, user_id, title))

    def rename_session(self, user_id: str, session_id: str, title: str) -> SessionRow:
        with self._db() as db:
            return _session_row(session_manager.rename_session(db, user_id, session_id, title))

    def delete_session(self, user_id: str, session_id: str) -> None:
        with self._db() as db:
            session_manager.delete_session(db, user_id, session_id)

    # messages

    def list_messages(self, user_id: str, session_id: str) -> List[MessageRow]:
        with self._db() as db:
            return [_message_row(m) for m in session_manager.get_chat_history(db, user_id, session_id)]

    def add_message(
        self,
        user_id: str,
        session_id: str,
        role: str,
        content: str,
        created_at: Optional[datetime] = None,
    ) -> MessageRow:
        with self._db() as db:
            row = session_manager.save_message(db, user_id, session_id, role, content, created_at)
            return _message_row(row)
