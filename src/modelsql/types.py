"""
Type coercion between attribute values and column storage values.

Two directions are handled for each declared attribute type:

- ``to_column(attribute_type, column_type, value)``: Python value to the
  representation stored in (and bound for) the column.
- ``from_column(attribute_type, raw)``: raw driver value back to the
  attribute's runtime type.

Supported attribute types:

    date     datetime <-> 'YYYY-MM-DD HH:MM:SS' string or integer epoch seconds
    boolean  True/False <-> 1/0
    uuid     canonical string <-> 16-byte binary

Any other type (string, number, or none at all) passes values through.
``None`` is never converted.
"""
import calendar
import datetime
import logging
import uuid
from collections.abc import Callable
from typing import Any

import dateutil.parser
import numpy as np
from modelsql.exceptions import ValueConversionError

logger = logging.getLogger(__name__)

DATETIME_FORMAT = '%Y-%m-%d %H:%M:%S'
EPOCH = datetime.datetime(1970, 1, 1)

# Attribute types with a conversion; values of these types are always bound
COERCED_TYPES = {'date', 'boolean', 'uuid'}

FALSE_STRINGS = {'', '0', 'false', 'f', 'no', 'n', 'off'}


def _convert_numpy_value(value: Any) -> Any:
    """Unwrap NumPy scalars into Python values, mapping NaN and NaT to None.
    """
    if isinstance(value, np.floating) and np.isnan(value):
        return None
    if isinstance(value, np.datetime64):
        if np.isnat(value):
            return None
        micros = value.astype('datetime64[us]').astype(np.int64).item()
        return EPOCH + datetime.timedelta(microseconds=micros)
    if isinstance(value, np.generic):
        return value.item()
    return value


def parse_datetime(value: Any) -> datetime.datetime:
    """Parse a date-like value into a datetime.

    Accepts datetime, date, epoch seconds and date strings. Strings are
    parsed as ISO 8601 first (so ``'2012'`` is the start of 2012), then with
    the general dateutil parser.

    Raises
        ValueError: If the value cannot be interpreted as a date
    """
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time())
    if isinstance(value, bool):
        raise ValueError('booleans are not dates')
    if isinstance(value, int | float):
        return EPOCH + datetime.timedelta(seconds=value)
    if isinstance(value, bytes | bytearray | memoryview):
        value = bytes(value).decode()
    if isinstance(value, str):
        text = value.strip()
        try:
            return dateutil.parser.isoparse(text)
        except ValueError:
            logger.debug(f'Not an ISO 8601 date, trying general parser: {text!r}')
        try:
            return dateutil.parser.parse(text, default=datetime.datetime(1970, 1, 1))
        except (ValueError, OverflowError) as err:
            raise ValueError(str(err)) from err
    raise ValueError(f'unsupported type {type(value).__name__}')


def _date_to_column(value: Any, column_type: str | None) -> Any:
    dt = parse_datetime(value)
    if column_type == 'integer':
        if dt.tzinfo is not None:
            return int(dt.timestamp())
        return calendar.timegm(dt.timetuple())
    if dt.tzinfo is not None:
        dt = dt.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    if dt.microsecond:
        return dt.strftime(f'{DATETIME_FORMAT}.%f')
    return dt.strftime(DATETIME_FORMAT)


def _date_from_column(raw: Any) -> datetime.datetime:
    return parse_datetime(raw)


def _boolean_to_column(value: Any, column_type: str | None) -> int:
    if isinstance(value, str):
        return 0 if value.strip().lower() in FALSE_STRINGS else 1
    return 1 if value else 0


def _boolean_from_column(raw: Any) -> bool:
    if isinstance(raw, bytes | bytearray | memoryview):
        return int.from_bytes(bytes(raw), 'big') != 0
    if isinstance(raw, str):
        return raw.strip().lower() not in FALSE_STRINGS
    return bool(raw)


def _uuid_to_column(value: Any, column_type: str | None) -> bytes:
    if isinstance(value, uuid.UUID):
        return value.bytes
    if isinstance(value, bytes | bytearray | memoryview):
        raw = bytes(value)
        if len(raw) != 16:
            raise ValueError(f'expected 16 bytes, got {len(raw)}')
        return raw
    if isinstance(value, str):
        return uuid.UUID(value).bytes
    raise ValueError(f'unsupported type {type(value).__name__}')


def _uuid_from_column(raw: Any) -> str:
    if isinstance(raw, uuid.UUID):
        return str(raw)
    if isinstance(raw, bytes | bytearray | memoryview):
        return str(uuid.UUID(bytes=bytes(raw)))
    return str(uuid.UUID(str(raw)))


_INBOUND: dict[str, Callable[[Any, str | None], Any]] = {
    'date': _date_to_column,
    'boolean': _boolean_to_column,
    'uuid': _uuid_to_column,
}

_OUTBOUND: dict[str, Callable[[Any], Any]] = {
    'date': _date_from_column,
    'boolean': _boolean_from_column,
    'uuid': _uuid_from_column,
}


def to_column(attribute_type: str | None, column_type: str | None, value: Any,
              attribute: str | None = None) -> Any:
    """Convert an attribute value into its column storage representation.

    Args:
        attribute_type: Declared attribute type ('date', 'boolean', 'uuid', ...)
        column_type: Storage type of the column ('datetime', 'timestamp',
            'integer'), only meaningful for dates
        value: Value to convert
        attribute: Attribute name, used in error messages

    Raises
        ValueConversionError: If the value is malformed for the type
    """
    value = _convert_numpy_value(value)
    if value is None:
        return None
    convert = _INBOUND.get(attribute_type)
    if convert is None:
        return value
    try:
        return convert(value, column_type)
    except (ValueError, TypeError, OverflowError) as err:
        raise ValueConversionError(attribute, value, str(err)) from err


def from_column(attribute_type: str | None, raw: Any, attribute: str | None = None) -> Any:
    """Convert a raw column value back into the attribute's runtime type.

    Raises
        ValueConversionError: If the stored value is malformed for the type
    """
    if raw is None:
        return None
    convert = _OUTBOUND.get(attribute_type)
    if convert is None:
        return raw
    try:
        return convert(raw)
    except (ValueError, TypeError, OverflowError) as err:
        raise ValueConversionError(attribute, raw, str(err)) from err
