"""Map SQL Server column types to SQLAlchemy bind types and OpenAPI schemas."""

from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

from sqlalchemy.dialects.mssql import BIT, DATETIMEOFFSET, NVARCHAR, TIME
from sqlalchemy.types import BigInteger, DateTime, Float, Integer, Numeric, TypeEngine

from .models import Column

_TRUE = {"1", "true", "t", "yes", "y"}
_FALSE = {"0", "false", "f", "no", "n"}


def _category(column: Column) -> str:
    t = column.data_type.lower()
    if "char" in t or t in ("text", "ntext"):
        return "text"
    if t == "bigint":
        return "bigint"
    if "int" in t:
        return "int"
    if t == "bit":
        return "bit"
    if "decimal" in t or t == "numeric":
        return "decimal"
    if "float" in t or t == "real":
        return "float"
    if "date" in t or "time" in t:
        return "datetime"
    if t == "uniqueidentifier":
        return "guid"
    return "other"


def binding_type(column: Column) -> TypeEngine:
    category = _category(column)
    if category == "text":
        if column.max_length and column.max_length > 0:
            return NVARCHAR(column.max_length)
        return NVARCHAR()
    if category == "bigint":
        return BigInteger()
    if category == "int":
        return Integer()
    if category == "bit":
        return BIT()
    if category == "decimal":
        return Numeric(18, 4)
    if category == "float":
        return Float()
    if category == "datetime":
        data_type = column.data_type.lower()
        if data_type == "time":
            return TIME()
        if data_type == "datetimeoffset":
            return DATETIMEOFFSET()
        return DateTime()
    if category == "guid":
        return NVARCHAR(50)
    return NVARCHAR()


def document_type(column: Column) -> Dict[str, str]:
    category = _category(column)
    if category == "bigint":
        return {"type": "integer", "format": "int64"}
    if category == "int":
        return {"type": "integer"}
    if category == "bit":
        return {"type": "boolean"}
    if category in ("decimal", "float"):
        return {"type": "number"}
    if category == "datetime":
        return {"type": "string", "format": "date-time"}
    return {"type": "string"}


def coerce_value(column: Column, raw: Any) -> Any:
    """Convert a textual request value into the column's Python type.

    Values that already arrived typed (JSON bodies) pass through untouched.
    Raises ValueError when the text does not parse.
    """
    if not isinstance(raw, str):
        return raw

    category = _category(column)
    if category in ("int", "bigint"):
        return int(raw)
    if category == "bit":
        lowered = raw.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValueError(f"invalid boolean: {raw!r}")
    if category == "decimal":
        try:
            return Decimal(raw)
        except InvalidOperation:
            raise ValueError(f"invalid decimal: {raw!r}") from None
    if category == "float":
        return float(raw)
    if category == "datetime":
        return _parse_temporal(column.data_type.lower(), raw)
    return raw


def _parse_temporal(data_type: str, raw: str) -> Any:
    text = raw.strip()
    if data_type == "time":
        return time.fromisoformat(text)
    if data_type == "date":
        return date.fromisoformat(text)
    # fromisoformat only accepts a trailing Z from Python 3.11 on
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)
