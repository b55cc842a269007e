"""
Timezone utilities for the sensor management service.

Timestamps written to the store are expressed in the configured timezone.
The timezone is passed in explicitly; there is no module-level state.
"""

import logging
from datetime import datetime
from typing import Optional

import pytz

log = logging.getLogger(__name__)

UTC = pytz.UTC


def resolve_timezone(name: Optional[str]):
    """Return the pytz timezone for ``name``, falling back to UTC for unknown names."""
    if not name:
        return UTC
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        log.warning(f"Unknown timezone {name!r}, using UTC")
        return UTC


def now_iso(tz) -> str:
    """Current time in ``tz`` as an ISO 8601 string."""
    return datetime.now(UTC).astimezone(tz).isoformat()
