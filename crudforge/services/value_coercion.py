import uuid
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from crudforge.db.schema import column_python_type


class CoercionError(ValueError):
    def __init__(self, column_key: str, kind: str, value):
        super().__init__(f'Invalid {kind} value for field "{column_key}"')
        self.column_key = column_key
        self.kind = kind
        self.value = value


def _coerce_bool(column_key: str, value):
    if isinstance(value, bool):
        return value
    text = str(value or "").strip().lower()
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    raise CoercionError(column_key, "boolean", value)


def _coerce_number(column_key: str, value, python_type):
    if python_type in {int, float} and isinstance(value, (int, float)) and not isinstance(value, bool):
        return python_type(value)
    if python_type is Decimal and isinstance(value, Decimal):
        return value
    text = str(value).strip()
    if not text:
        raise CoercionError(column_key, "number", value)
    try:
        if python_type is int:
            return int(text)
        if python_type is float:
            return float(text)
        if python_type is Decimal:
            return Decimal(text)
        return python_type(text)
    except (ValueError, TypeError, InvalidOperation):
        raise CoercionError(column_key, "number", value)


def _coerce_date(column_key: str, value):
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    text = str(value or "").strip()
    if not text:
        raise CoercionError(column_key, "date", value)
    try:
        # Full ISO datetimes are cut down to their date part.
        if "T" in text or " " in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    except ValueError:
        raise CoercionError(column_key, "date", value)


def _coerce_datetime(column_key: str, value, timezone_aware: bool):
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if not text:
            raise CoercionError(column_key, "datetime", value)
        try:
            if "T" not in text and " " not in text and len(text) == 10:
                parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
            else:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise CoercionError(column_key, "datetime", value)
    if timezone_aware and parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if not timezone_aware and parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def coerce_value(column, value):
    """Convert a raw request value to the python type of ``column``.

    Columns without a known python type get the value unchanged.
    """
    if value is None:
        return None
    python_type = column_python_type(column)
    key = getattr(column, "key", "?")
    if python_type is None or python_type is str:
        return value if isinstance(value, str) else str(value)
    if python_type is uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value).strip())
        except ValueError:
            raise CoercionError(key, "uuid", value)
    if python_type is bool:
        return _coerce_bool(key, value)
    if python_type in {int, float, Decimal}:
        return _coerce_number(key, value, python_type)
    if python_type is datetime:
        return _coerce_datetime(key, value, bool(getattr(column.type, "timezone", False)))
    if python_type is date:
        return _coerce_date(key, value)
    return value
