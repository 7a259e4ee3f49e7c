"""
데이터베이스/Redis 연결
스토리보드 원장(SQL)과 크레딧 캐시(Redis)를 함께 초기화한다
"""

import logging
import os
import ssl
import uuid
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import redis.asyncio as redis
from sqlalchemy import MetaData, types
from sqlalchemy.dialects.postgresql import JSONB, UUID as PostgresUUID
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from storyboard_api.core.config import settings

logger = logging.getLogger(__name__)


class UUID(types.TypeDecorator):
    """스토리보드 id 컬럼 타입 (PostgreSQL은 네이티브 UUID, 그 외는 CHAR(36))"""
    impl = types.CHAR(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PostgresUUID(as_uuid=True))
        return dialect.type_descriptor(types.CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == "postgresql":
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class JSON(types.TypeDecorator):
    """캐릭터 참조 저장용 JSON 타입 (PostgreSQL은 JSONB)"""
    impl = types.JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(types.JSON())


def _ssl_context(sslmode: str):
    """libpq sslmode → asyncpg용 SSLContext (require/prefer는 암호화만)"""
    mode = sslmode.strip().lower()
    if mode not in ("require", "prefer", "verify-ca", "verify-full"):
        return None
    ctx = ssl.create_default_context()
    if mode in ("require", "prefer"):
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


def _build_engine(database_url: str):
    """DATABASE_URL로부터 비동기 엔진 생성 (sqlite 파일 또는 PostgreSQL)"""
    if database_url.startswith("sqlite"):
        path = database_url.split(":///", 1)[-1]
        if path and path != ":memory:" and os.path.dirname(path):
            os.makedirs(os.path.dirname(path), exist_ok=True)
        return create_async_engine(database_url, echo=settings.DEBUG)

    # asyncpg는 sslmode 쿼리를 모르므로 connect_args로 옮긴다
    parts = urlsplit(database_url.replace("postgresql://", "postgresql+asyncpg://"))
    query = parse_qsl(parts.query, keep_blank_values=True)
    sslmode = next((v for k, v in query if k.lower() == "sslmode"), None)
    query = [(k, v) for k, v in query if k.lower() not in ("sslmode", "ssl")]
    url = urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))

    connect_args = {}
    ctx = _ssl_context(sslmode) if sslmode else None
    if ctx is not None:
        connect_args["ssl"] = ctx

    return create_async_engine(
        url,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        pool_recycle=300,
        connect_args=connect_args,
    )


engine = _build_engine(settings.DATABASE_URL)

# 쓰기마다 세션 하나 (저장소가 직접 커밋)
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# 크레딧 캐시
redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)


class Base(DeclarativeBase):
    """SQLAlchemy Base 클래스"""
    metadata = MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s",
        }
    )


async def check_db_connection() -> bool:
    """스토리보드 DB 연결 확인"""
    try:
        async with engine.begin() as conn:
            await conn.exec_driver_sql("SELECT 1")
        return True
    except Exception as e:
        logger.warning(f"데이터베이스 연결 실패, 메모리 저장소로 대체 동작: {e}")
        return False


async def check_redis_connection() -> bool:
    """크레딧 캐시 Redis 연결 확인"""
    try:
        await redis_client.ping()
        return True
    except Exception as e:
        logger.warning(f"Redis 연결 실패: {e}")
        return False
