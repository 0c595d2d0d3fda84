from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.hrms.db import make_engine, make_sessionmaker

logger = logging.getLogger("hrms.scripts")


@contextmanager
def script_session(db_url: str) -> Iterator[Session]:
    """One-shot session for CLI scripts: commits on success, rolls back and disposes the engine either way."""
    engine = make_engine(db_url)
    s: Session = make_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        logger.exception("Script session rolled back (%s)", engine.url.get_backend_name())
        raise
    finally:
        s.close()
        engine.dispose()
