from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

Base = declarative_base()


def get_engine(database_url: str, echo: bool = False):
    return create_async_engine(database_url, echo=echo, future=True)


def get_session(engine):
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
    )


def normalize_timestamp(value: datetime) -> datetime:
    """
    Naive UTC, second precision. Every persisted or compared timestamp goes
    through here; naive inputs are taken to be UTC already.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    return normalize_timestamp(value).strftime(TIMESTAMP_FORMAT)


def utcnow() -> datetime:
    return normalize_timestamp(datetime.now(timezone.utc))
