from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings


def _build_database_url(raw_url: str) -> str:
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return raw_url


def build_engine(raw_url: str) -> Engine:
    url = _build_database_url(raw_url)
    if not url:
        raise RuntimeError("DATABASE_URL is not configured")
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if url in {"sqlite://", "sqlite:///:memory:"}:
            # One shared connection, otherwise each checkout sees an empty database.
            options["poolclass"] = StaticPool
        return create_engine(url, **options)
    return create_engine(url, pool_pre_ping=True)


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        bind=bind, autoflush=False, autocommit=False, expire_on_commit=False
    )


engine = build_engine(settings.database_url)
SessionLocal = build_session_factory(engine)
Base = declarative_base()


def init_db(bind: Engine | None = None) -> None:
    from app.models import challenge as _challenge  # noqa: F401
    from app.models import user as _user  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def session_scope(factory: sessionmaker | None = None):
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
