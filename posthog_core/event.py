from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping, Optional

from posthog_core.types import Properties
from posthog_core.utils import clean, iso_timestamp, system_context
from posthog_core.version import VERSION

LIB_NAME = "posthog-core"

# event names
SCREEN = "$screen"
IDENTIFY = "$identify"
CREATE_ALIAS = "$create_alias"
GROUP_IDENTIFY = "$groupidentify"
SET = "$set"
SET_ONCE = "$set_once"
EXCEPTION = "$exception"
FEATURE_FLAG_CALLED = "$feature_flag_called"
APPLICATION_OPENED = "Application Opened"
APPLICATION_BACKGROUNDED = "Application Backgrounded"

# property names
SCREEN_NAME = "$screen_name"
ANON_DISTINCT_ID = "$anon_distinct_id"
GROUPS = "$groups"
GROUP_TYPE = "$group_type"
GROUP_KEY = "$group_key"
GROUP_SET = "$group_set"
SESSION_ID = "$session_id"
FEATURE_FLAG = "$feature_flag"
FEATURE_FLAG_RESPONSE = "$feature_flag_response"
EXCEPTION_TYPE = "$exception_type"
EXCEPTION_MESSAGE = "$exception_message"
EXCEPTION_STACKTRACE = "$exception_stacktrace"
EXCEPTION_LEVEL = "$exception_level"


@dataclass(frozen=True)
class EventRecord:
    """
    A captured event waiting for delivery. Never mutated after it is built.

    Records made by `build_event` are frozen all the way down: nested
    mappings are read-only and nested lists are tuples. `to_message()`
    returns a plain, mutable copy.
    """

    name: str
    properties: Mapping[str, Any] = field(default_factory=dict)
    timestamp: str = ""

    def to_message(self) -> dict[str, Any]:
        return {
            "event": self.name,
            "properties": _thaw(self.properties),
            "timestamp": self.timestamp,
        }


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


def lib_properties() -> Properties:
    return {"$lib": LIB_NAME, "$lib_version": VERSION, **system_context()}


def build_event(
    name: str,
    properties: Optional[Mapping[str, Any]],
    super_properties: Mapping[str, Any],
    distinct_id: str,
    session_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> EventRecord:
    """
    Assemble an `EventRecord`.

    Properties are layered in increasing precedence: library identifiers,
    super properties, the distinct id and session id, then the explicit
    `properties` of the call.
    """
    merged: dict[str, Any] = lib_properties()
    merged.update(super_properties)
    merged["distinct_id"] = distinct_id
    if session_id:
        merged[SESSION_ID] = session_id
    if properties:
        merged.update(properties)

    return EventRecord(
        name=name,
        properties=_freeze(clean(merged)),
        timestamp=iso_timestamp(timestamp),
    )
