# app/db.py
import logging
from contextlib import contextmanager
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, declarative_base

from . import config

log = logging.getLogger(__name__)

Base = declarative_base()

_engine = None
_Session = None
_engine_url = None


def init_db(url: str | None = None, create_tables: bool = False):
    """Bind the engine to `url` (defaults to DATABASE_URL). Rebinds if the URL changes."""
    global _engine, _Session, _engine_url
    url = url or config.DATABASE_URL
    if _engine is not None and _engine_url == url:
        if create_tables:
            create_all()
        return _engine
    if _engine is not None:
        _engine.dispose()

    kwargs = {"pool_pre_ping": True, "future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    _engine = create_engine(url, **kwargs)
    _Session = sessionmaker(bind=_engine, autoflush=False, autocommit=False, future=True)
    _engine_url = url

    # sanity ping
    with _engine.connect() as c:
        c.execute(text("SELECT 1"))
    log.info(f"✅ DB ready ({_engine.dialect.name})")

    if create_tables:
        create_all()
    return _engine


def create_all():
    from . import models  # noqa: F401  (registers tables on Base)
    Base.metadata.create_all(_engine)
    log.info("✅ Tables created / verified")


def get_engine():
    if _engine is None:
        init_db()
    return _engine


@contextmanager
def get_session():
    """Provide a transactional scope for raw SQL usage."""
    if _Session is None:
        init_db()
    s = _Session()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
