"""
Date helpers for execution and review dates found in imported files.

Exports from test management tools carry dates in whatever format the tool
used. These helpers decide whether such a value is a date at all and
normalise it to ISO 8601 when a template asks for it.
"""

import logging
import re
import warnings
from typing import Any, List, Optional

import pandas as pd

from caseload.core.config import settings

logger = logging.getLogger(__name__)

SAMPLE_LIMIT = 5
SUMMARY_EVERY = 100

_NUMERIC_DATE = re.compile(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{2,4})")

_failures: dict = {}


def _note_failure(value: Any, context: str, error: Optional[Exception]) -> None:
    """Log the first few unparseable values per context, then only periodic totals."""
    entry = _failures.setdefault(context, {"count": 0, "samples": []})
    entry["count"] += 1

    if len(entry["samples"]) < SAMPLE_LIMIT:
        entry["samples"].append(value)
        logger.debug("Unparseable date (%s): %r (%s)", context, value, error)
    elif entry["count"] % SUMMARY_EVERY == 0:
        logger.info(
            "%d unparseable dates so far (%s); samples=%s",
            entry["count"],
            context,
            entry["samples"],
        )


def _dayfirst_order(day_or_month: int, month_or_day: int) -> List[Optional[bool]]:
    """Order of dayfirst interpretations to try for an ambiguous numeric date."""
    if day_or_month > 12:
        preferred = True
    elif month_or_day > 12:
        preferred = False
    else:
        preferred = settings.date_default_dayfirst
    return [preferred, not preferred]


def _to_timestamp(value: Any, dayfirst: Optional[bool] = None) -> pd.Timestamp:
    kwargs = {"utc": True, "errors": "raise"}
    if dayfirst is not None:
        kwargs["dayfirst"] = dayfirst
    with warnings.catch_warnings():
        # Format inference warnings are noise for single values
        warnings.simplefilter("ignore", UserWarning)
        return pd.to_datetime(value, **kwargs)


def parse_flexible_date(value: Any, *, log_context: Optional[str] = None) -> Optional[str]:
    """
    Parse a date in any common format and return it as ``YYYY-MM-DDTHH:MM:SSZ``.

    Numeric dates such as ``03/04/2024`` are ambiguous; a component above 12
    decides the order, otherwise ``settings.date_default_dayfirst`` does and
    the other order is tried as a fallback.

    Returns:
        The ISO 8601 string, or None when the value is empty or not a date
    """
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None

    attempts: List[Optional[bool]] = []
    if isinstance(value, str):
        match = _NUMERIC_DATE.match(value)
        if match:
            attempts.extend(_dayfirst_order(int(match.group(1)), int(match.group(2))))
    attempts.append(None)

    last_error: Optional[Exception] = None
    for dayfirst in attempts:
        try:
            parsed = _to_timestamp(value, dayfirst)
        except (ValueError, TypeError, OverflowError) as exc:
            last_error = exc
            continue
        if not pd.isna(parsed):
            return parsed.tz_convert("UTC").strftime("%Y-%m-%dT%H:%M:%SZ")

    _note_failure(value, log_context or "default", last_error)
    return None


def is_valid_date(value: Any) -> bool:
    """Return True when ``value`` can be interpreted as a calendar date."""
    return parse_flexible_date(value, log_context="validation") is not None


def format_iso_date(value: Any) -> Optional[str]:
    """Return the YYYY-MM-DD part of a parsed date, or None when unparseable."""
    parsed = parse_flexible_date(value, log_context="template")
    if parsed is None:
        return None
    return parsed.split("T", 1)[0]
