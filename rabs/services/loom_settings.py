"""
Loom settings service.

Reads and writes the single ``loom_settings`` row.  Defaults come from the
Flask config (``LOOM_DEFAULT_WINDOW_WEEKS`` / ``LOOM_STAFF_RATIO``) the first
time the row is needed.
"""

import logging

from flask import current_app

from rabs.core.exceptions import ValidationError
from rabs.models import db
from rabs.models.loom import LoomSettings

logger = logging.getLogger(__name__)

SETTINGS_ROW_ID = 1


def window_bounds() -> tuple[int, int]:
    return (
        current_app.config.get("LOOM_MIN_WINDOW_WEEKS", 1),
        current_app.config.get("LOOM_MAX_WINDOW_WEEKS", 16),
    )


def validate_window_weeks(weeks) -> int:
    """Return *weeks* as an int, raising ValidationError when out of bounds."""
    low, high = window_bounds()
    try:
        value = int(weeks)
    except (TypeError, ValueError):
        raise ValidationError(
            f"Window size must be a whole number of weeks, got {weeks!r}",
            details={"weeks": weeks},
        ) from None
    if isinstance(weeks, float) and not weeks.is_integer():
        raise ValidationError(
            f"Window size must be a whole number of weeks, got {weeks!r}",
            details={"weeks": weeks},
        )
    if isinstance(weeks, bool) or not (low <= value <= high):
        raise ValidationError(
            f"Window size must be between {low} and {high} weeks",
            details={"weeks": weeks, "min": low, "max": high},
        )
    return value


def get_loom_settings() -> LoomSettings:
    """Return the settings row, creating it with config defaults if missing.

    Only flushes; the caller's transaction decides whether it persists.
    """
    settings = db.session.get(LoomSettings, SETTINGS_ROW_ID)
    if settings is None:
        settings = LoomSettings(
            id=SETTINGS_ROW_ID,
            window_weeks=current_app.config.get("LOOM_DEFAULT_WINDOW_WEEKS", 4),
            staff_ratio=current_app.config.get("LOOM_STAFF_RATIO", 5),
        )
        db.session.add(settings)
        db.session.flush()
        logger.info("Loom settings initialised: window=%d weeks ratio=%d",
                    settings.window_weeks, settings.staff_ratio)
    return settings


def get_loom_window_size() -> int:
    return get_loom_settings().window_weeks


def get_staff_ratio() -> int:
    return get_loom_settings().staff_ratio


def update_loom_settings(window_weeks=None, staff_ratio=None) -> LoomSettings:
    """Validate and persist new settings values; omitted values are kept."""
    settings = get_loom_settings()

    if window_weeks is not None:
        settings.window_weeks = validate_window_weeks(window_weeks)

    if staff_ratio is not None:
        try:
            ratio = int(staff_ratio)
        except (TypeError, ValueError):
            raise ValidationError("staff_ratio must be a positive integer") from None
        if ratio < 1:
            raise ValidationError("staff_ratio must be a positive integer",
                                  details={"staff_ratio": staff_ratio})
        settings.staff_ratio = ratio

    db.session.commit()
    logger.info("Loom settings updated: window=%d weeks ratio=%d",
                settings.window_weeks, settings.staff_ratio)
    return settings
