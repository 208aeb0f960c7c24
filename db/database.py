import os
from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

load_dotenv()

DATABASE_URL = (os.getenv("DATABASE_URL") or "sqlite:///./chat.db").strip()

Base = declarative_base()


def make_engine(url: str) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}

    new_engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)

    if url.startswith("sqlite"):
        # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
        @event.listens_for(new_engine, "connect")
        def _enable_foreign_keys(dbapi_conn, _):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON;")
            cur.close()

    return new_engine


def init_db(bind: Engine) -> None:
    from db import models  # noqa: F401  registers tables on Base.metadata

    Base.metadata.create_all(bind=bind)


def make_session_factory(url: str) -> sessionmaker:
    """Create the tables for ``url`` and return a session factory bound to it."""
    bound = make_engine(url)
    init_db(bound)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bound)


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
