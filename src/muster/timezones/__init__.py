"""Timezone resolution and date/time parsing.

Public API:
- resolve_timezone / is_valid_timezone / display_name / utc_offset
- TimezoneResolver: user -> guild -> default resolution
- parse_date / parse_time / apply_meridiem / combine / ensure_future / parse_when
"""

from muster.timezones.parsing import (
    DATE_FORMAT_HELP,
    DATE_INPUT_FORMATS,
    MINIMUM_LEAD_TIME,
    ClockTime,
    apply_meridiem,
    combine,
    ensure_future,
    parse_date,
    parse_time,
    parse_when,
)
from muster.timezones.resolver import (
    TimezonePreferences,
    TimezoneResolver,
    display_name,
    get_zone,
    is_valid_timezone,
    resolve_timezone,
    utc_offset,
)

__all__ = [
    "DATE_FORMAT_HELP",
    "DATE_INPUT_FORMATS",
    "MINIMUM_LEAD_TIME",
    "ClockTime",
    "TimezonePreferences",
    "TimezoneResolver",
    "apply_meridiem",
    "combine",
    "display_name",
    "ensure_future",
    "get_zone",
    "is_valid_timezone",
    "parse_date",
    "parse_time",
    "parse_when",
    "resolve_timezone",
    "utc_offset",
]
