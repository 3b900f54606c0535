"""运行库连接：按 URL 构建引擎与会话工厂；SQLite 文件库开启 WAL，API 与 worker 可同时读写。"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from skillflow.config import get_settings
from skillflow.infra.db.models import Base

logger = logging.getLogger(__name__)


def _sqlite_pragmas(dbapi_conn, _connection_record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


def build_engine(database_url: str) -> Engine:
    """SQLite 关闭线程检查（Celery 与 to_thread 会跨线程用连接），文件库再挂 WAL；其他库只开连接预检。"""
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(url, pool_pre_ping=True)
    engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
    if url.database and url.database != ":memory:":
        event.listen(engine, "connect", _sqlite_pragmas)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


engine = build_engine(get_settings().database_url)
SessionLocal = build_session_factory(engine)


def init_db(bind: Engine | None = None) -> None:
    """建表；失败时记录并继续抛出，让进程启动失败。"""
    target = bind or engine
    where = target.url.render_as_string(hide_password=True)
    try:
        Base.metadata.create_all(bind=target)
    except SQLAlchemyError as exc:
        logger.exception(
            "run store init failed",
            extra={"event": "db.init.failed", "op": where, "error_type": type(exc).__name__, "error": str(exc)},
        )
        raise
    logger.info(
        "run store ready",
        extra={"event": "db.init.succeeded", "op": where, "detail": {"tables": sorted(Base.metadata.tables)}},
    )
