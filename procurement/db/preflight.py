"""
Startup connectivity check for the sourcing database.
"""
import sys
import time

from sqlalchemy import text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, OperationalError

from procurement.core.logging import get_logger

logger = get_logger("procurement.db.preflight")

_AUTH_FAILURE_MARKERS = ("password authentication failed", "access denied")


def describe_url(url: str) -> str:
    """The database URL with the password masked."""
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        return "<unparseable DATABASE_URL>"


def run_db_preflight(retries: int = 5, delay: float = 2, bind: Engine = None) -> bool:
    """
    Run ``SELECT 1`` until it succeeds. Exits the process on bad credentials
    or once ``retries`` attempts have failed.
    """
    if bind is None:
        from procurement.db.session import engine as bind

    target = describe_url(str(bind.url))
    logger.info(f"DB preflight against {target}")

    for attempt in range(1, retries + 1):
        try:
            with bind.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info(f"DB preflight passed on attempt {attempt}")
            return True
        except OperationalError as e:
            reason = str(e.orig) if e.orig is not None else str(e)
            if any(marker in reason.lower() for marker in _AUTH_FAILURE_MARKERS):
                logger.error(f"Database rejected the credentials for {target}; check POSTGRES_* / DATABASE_URL")
                sys.exit(1)
            if attempt == retries:
                logger.error(f"Database {target} unreachable after {retries} attempts: {reason}")
                sys.exit(1)
            logger.warning(f"DB preflight attempt {attempt}/{retries} failed ({reason}); retrying in {delay}s")
            time.sleep(delay)
    return False


if __name__ == "__main__":
    run_db_preflight()
