"""Shared utility functions.

parse_date:        lenient date parsing (returns None on bad input)
parse_time:        HH:MM / HH:MM:SS parsing (raises ValueError)
parse_datetime:    ISO datetime parsing (raises ValueError)
loom_step:         transaction boundary for one Loom engine step
"""
import functools
import logging
from datetime import date, datetime, time

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from rabs.core.exceptions import NotFoundError, ValidationError
from rabs.core.results import LoomResult
from rabs.models import db
from rabs.utils.errors import E

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse a date string (ISO or DD/MM/YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD/MM/YYYY (Australian format)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d/%m/%Y").date()
    except (ValueError, TypeError):
        return None


def parse_time(value):
    """Parse ``HH:MM`` or ``HH:MM:SS`` to a time object; raises ValueError."""
    if isinstance(value, time):
        return value
    if not value:
        raise ValueError("time value is required")
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(str(value).strip(), fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time {value!r}. Use HH:MM.")


def parse_datetime(value):
    """Parse an ISO datetime string; raises ValueError on bad input."""
    if isinstance(value, datetime):
        return value
    if not value:
        raise ValueError("datetime value is required")
    return datetime.fromisoformat(str(value).strip())


# ── Transaction boundary ─────────────────────────────────────────────────────

def loom_step(label):
    """Run a Loom engine step as one transaction returning a ``LoomResult``.

    The wrapped function returns a ``LoomResult`` and leaves the session
    dirty; this decorator commits it.  Negative results (insufficient staff
    or vehicles) are committed too, because they are recorded state.

    NotFoundError    → rollback, ERR_NOT_FOUND
    ValidationError  → rollback, ERR_VALIDATION_INVALID
    IntegrityError   → rollback, ERR_DATABASE (constraint violation)
    SQLAlchemyError  → rollback, ERR_DATABASE
    anything else    → rollback, ERR_INTERNAL (logged with traceback)

    Usage::

        @loom_step("assigning staff")
        def assign_staff(instance_id):
            ...
            return LoomResult.ok("Assigned 3 staff", staff_count=3)
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                result = fn(*args, **kwargs)
                db.session.commit()
                return result
            except NotFoundError as exc:
                db.session.rollback()
                return LoomResult.failure(str(exc), E.NOT_FOUND)
            except ValidationError as exc:
                db.session.rollback()
                result = LoomResult.failure(str(exc), E.VALIDATION_INVALID)
                if exc.details:
                    result.data["details"] = exc.details
                return result
            except IntegrityError as exc:
                db.session.rollback()
                logger.warning("Integrity error while %s: %s", label, exc.orig)
                return LoomResult.failure(f"Error {label}: constraint violation", E.DATABASE)
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.exception("Database error while %s", label)
                return LoomResult.failure(f"Error {label}: {exc}", E.DATABASE)
            except Exception:
                db.session.rollback()
                logger.exception("Unexpected error while %s", label)
                return LoomResult.failure(f"Error {label}: unexpected error", E.INTERNAL)

        return wrapper

    return decorator
