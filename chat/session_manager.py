import uuid
from datetime import datetime
from sqlalchemy.orm import Session
from db.models import Session as SessionModel, Message, User

from chat.state import DEFAULT_TITLE


class SessionAccessError(LookupError):
    """Raised when a session does not exist for the requesting owner."""


def _owned_session(db: Session, user_id: str, session_id: str) -> SessionModel:
    session = db.query(SessionModel).filter_by(id=session_id, user_id=user_id).first()
    if session is None:
        raise SessionAccessError(f"session {session_id} not found for user {user_id}")
    return session


# =========================
# USERS
# =========================

def create_user(db: Session, email: str, password_hash: str) -> User:
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        password_hash=password_hash,
        created_at=datetime.utcnow()
    )
    db.add(user)
    db.commit()
    return user


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter_by(email=email).first()


# =========================
# SESSIONS
# =========================

def create_session(db: Session, user_id: str, title: str | None = None) -> SessionModel:
    """
    Create a new session for the user.
    A blank title falls back to the placeholder title.
    """
    session = SessionModel(
        id=str(uuid.uuid4()),
        title=(title or "").strip() or DEFAULT_TITLE,
        user_id=user_id,
        created_at=datetime.utcnow()
    )
    db.add(session)
    db.commit()
    return session


def list_sessions(db: Session, user_id: str) -> list[SessionModel]:
    """
    Sessions owned by the user, newest first.
    """
    return (
        db.query(SessionModel)
        .filter_by(user_id=user_id)
        .order_by(SessionModel.created_at.desc(), SessionModel.id.desc())
        .all()
    )


def rename_session(db: Session, user_id: str, session_id: str, title: str) -> SessionModel:
    session = _owned_session(db, user_id, session_id)
    session.title = title
    db.commit()
    return session


def delete_session(db: Session, user_id: str, session_id: str) -> None:
    session = _owned_session(db, user_id, session_id)
    db.delete(session)
    db.commit()


# =========================
# MESSAGES
# =========================

def save_message(
    db: Session,
    user_id: str,
    session_id: str,
    role: str,
    content: str,
    created_at: datetime | None = None,
) -> Message:
    """
    Save a single chat message into a session the user owns.
    Callers that write in the background pass the time the message was
    composed so that late writes keep their place in the ordering.
    """
    _owned_session(db, user_id, session_id)
    msg = Message(
        id=str(uuid.uuid4()),
        session_id=session_id,
        role=role,
        content=content,
        created_at=created_at or datetime.utcnow()
    )
    db.add(msg)
    db.commit()
    return msg


def get_chat_history(db: Session, user_id: str, session_id: str, limit: int | None = None) -> list[Message]:
    """
    Messages of a session in chronological order (ties broken by id).
    With ``limit`` only the last N are returned.
    """
    _owned_session(db, user_id, session_id)
    query = db.query(Message).filter_by(session_id=session_id)
    if limit is None:
        return query.order_by(Message.created_at.asc(), Message.id.asc()).all()

    messages = (
        query.order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(messages))
