import logging
import numbers
import platform
import sys
from collections import defaultdict
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

import distro  # For Linux OS detection
from dateutil.tz import tzlocal, tzutc

from posthog_core.types import JSONValue

log = logging.getLogger("posthog_core")


def is_naive(dt):
    """Determines if a given datetime.datetime is naive."""
    return dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None


def guess_timezone(dt):
    """Attempts to convert a naive datetime to an aware datetime."""
    if is_naive(dt):
        # a naive value taken moments ago came from datetime.now(),
        # anything older is assumed to be utc
        delta = datetime.now() - dt
        if delta.total_seconds() < 5:
            return dt.replace(tzinfo=tzlocal())
        else:
            return dt.replace(tzinfo=tzutc())

    return dt


def iso_timestamp(dt: Optional[datetime] = None) -> str:
    """ISO-8601 timestamp with timezone, defaulting to now in utc."""
    if dt is None:
        dt = datetime.now(tz=tzutc())
    return guess_timezone(dt).isoformat()


def remove_trailing_slash(host):
    if host.endswith("/"):
        return host[:-1]
    return host


def clean(item: Any) -> JSONValue:
    """
    Coerce `item` into a JSON value.

    Decimals become floats, UUIDs and enums their string or raw value,
    dates ISO strings, sets and tuples lists, and dataclasses or
    pydantic-like models dicts. Values that cannot be represented are
    dropped from their containing dict with a warning.
    """
    if isinstance(item, Decimal):
        return float(item)
    if isinstance(item, UUID):
        return str(item)
    if isinstance(item, Enum):
        return clean(item.value)
    if isinstance(item, (datetime, date)):
        return item.isoformat()
    if isinstance(item, (str, bool, numbers.Number, type(None))):
        return item
    if isinstance(item, (set, frozenset, list, tuple)):
        return _clean_list(item)
    # Pydantic model
    try:
        if hasattr(item, "model_dump") and callable(item.model_dump):
            item = item.model_dump()
    except TypeError as e:
        log.debug(f"Could not serialize Pydantic-like model: {e}")
    if isinstance(item, dict):
        return _clean_dict(item)
    if is_dataclass(item) and not isinstance(item, type):
        return _clean_dict(asdict(item))
    return _coerce_unicode(item)


def _clean_list(list_):
    return [clean(item) for item in list_]


def _clean_dict(dict_):
    data = {}
    for k, v in dict_.items():
        try:
            data[str(k)] = clean(v)
        except TypeError:
            log.warning(
                'Dictionary values must be serializeable to JSON "%s" value %s of type %s is unsupported.',
                k,
                v,
                type(v),
            )
    return data


def _coerce_unicode(cmplx: Any) -> Optional[str]:
    """Decode bytes, raise TypeError for anything else that is not JSON."""
    if isinstance(cmplx, bytes):
        try:
            return cmplx.decode("utf-8", "strict")
        except UnicodeDecodeError as exception:
            log.warning("Error decoding: %s", exception)
            return None
    raise TypeError("unsupported type %s" % type(cmplx))


class SizeLimitedDict(defaultdict):
    def __init__(self, max_size, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_size = max_size

    def __setitem__(self, key, value):
        if len(self) >= self.max_size:
            self.clear()

        super().__setitem__(key, value)


def get_os_info():
    """
    Returns standardized OS name and version information.
    """
    os_name = ""
    os_version = ""

    platform_name = sys.platform

    if platform_name.startswith("win"):
        os_name = "Windows"
        os_version = platform.win32_ver()[0]
    elif platform_name == "darwin":
        os_name = "Mac OS X"
        os_version = platform.mac_ver()[0]
    elif platform_name.startswith("linux"):
        os_name = "Linux"
        os_version = distro.version()
    else:
        os_name = platform_name
        os_version = platform.release()

    return os_name, os_version


def system_context() -> dict[str, Any]:
    os_name, os_version = get_os_info()

    return {
        "$python_runtime": platform.python_implementation(),
        "$python_version": "%s.%s.%s" % (sys.version_info[:3]),
        "$os": os_name,
        "$os_version": os_version,
    }
