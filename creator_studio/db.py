from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generator

from fastapi import Request
from sqlalchemy import Engine, create_engine, event, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from creator_studio.models import Base, SocialAccount, utc_now

logger = logging.getLogger("creator-studio")


def create_db_engine(database_url: str) -> Engine:
    kwargs: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)
    logger.info("db_write_success event=init_db dialect=%s", engine.dialect.name)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("db_write_fail")
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db(request: Request) -> Generator[Session, None, None]:
    with session_scope(request.app.state.session_factory) as session:
        yield session


def upsert_social_account(
    session: Session,
    user_id: int,
    platform: str,
    username: str,
    access_token: str,
    token_expires_at: datetime,
    external_id: str,
) -> None:
    values = {
        "username": username,
        "connected": True,
        "access_token": access_token,
        "token_expires_at": token_expires_at,
        "external_id": external_id,
        "updated_at": utc_now(),
    }
    dialect = session.get_bind().dialect.name
    if dialect in {"sqlite", "postgresql"}:
        insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
        stmt = insert(SocialAccount).values(user_id=user_id, platform=platform, created_at=utc_now(), **values)
        stmt = stmt.on_conflict_do_update(index_elements=["user_id", "platform"], set_=values)
        session.execute(stmt)
    else:
        account = get_social_account(session, user_id, platform)
        if account is None:
            session.add(SocialAccount(user_id=user_id, platform=platform, **values))
        else:
            for key, value in values.items():
                setattr(account, key, value)
    session.flush()
    logger.info("db_write_success event=upsert_social_account user_id=%s platform=%s", user_id, platform)


def get_social_account(session: Session, user_id: int, platform: str) -> SocialAccount | None:
    # populate_existing: rows may have been rewritten by the ON CONFLICT upsert in this session
    return session.execute(
        select(SocialAccount)
        .where(SocialAccount.user_id == user_id, SocialAccount.platform == platform)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def list_social_accounts(session: Session, user_id: int) -> list[SocialAccount]:
    return list(session.execute(select(SocialAccount).where(SocialAccount.user_id == user_id)).scalars().all())


__all__ = [
    "create_db_engine",
    "create_session_factory",
    "get_db",
    "get_social_account",
    "init_db",
    "list_social_accounts",
    "session_scope",
    "upsert_social_account",
]
