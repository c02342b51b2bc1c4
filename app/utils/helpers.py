"""Shared utility functions for services and blueprints.

commit_or_failure:  commit the session, typed failure on database errors
parse_bool:         lenient JSON/query boolean parsing (None on bad input)
as_utc:             attach UTC to naive datetimes read back from SQLite
"""
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from app.models import db
from app.utils.errors import E, failure

logger = logging.getLogger(__name__)

_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "off"})


# ── Database commit helper ───────────────────────────────────────────────────

def commit_or_failure():
    """Commit the current SQLAlchemy session, returning a typed failure on error.

    Returns:
        None on success.
        A failure dict (see ``app.utils.errors.failure``) on error, after the
        session has been rolled back.

    Usage::

        err = commit_or_failure()
        if err:
            return None, err

    IntegrityError → ERR_CONFLICT_DUPLICATE (duplicate / constraint violation)
    OperationalError → ERR_INTERNAL (connection / lock issues)
    """
    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return failure(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        return failure(E.INTERNAL, "Database error")
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        return failure(E.INTERNAL, "Database error")


def parse_bool(value):
    """Parse a boolean from JSON or a query string.

    Returns None for anything that is not clearly true or false, so callers
    can answer with a 400 instead of guessing.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def as_utc(value):
    """Return ``value`` as an aware UTC datetime.

    SQLite drops tzinfo on ``DateTime(timezone=True)`` columns; values read
    back are naive but were written in UTC.
    """
    if value is None:
        return None
    if not isinstance(value, datetime):
        raise TypeError(f"expected datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
