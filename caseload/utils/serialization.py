from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel


def _make_json_safe(value: Any) -> Any:
    """
    Convert a history payload into plain JSON types before it is written to a
    backend. Sessions loaded from older exports may still carry Decimals or
    NaN values that came out of spreadsheet cells.
    """
    if isinstance(value, BaseModel):
        return _make_json_safe(value.model_dump(mode="json"))
    if isinstance(value, dict):
        return {str(key): _make_json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_make_json_safe(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral() else str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float) and value != value:
        return None
    if isinstance(value, (bool, int, float, str)) or value is None:
        return value
    return str(value)
