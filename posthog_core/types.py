import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, TypedDict, Union, cast

from typing_extensions import NotRequired, TypeAlias

JSONValue: TypeAlias = Union[
    None, bool, int, float, str, List["JSONValue"], Dict[str, "JSONValue"]
]
Properties: TypeAlias = Dict[str, JSONValue]
FlagValue: TypeAlias = Union[bool, str, Dict[str, JSONValue], List[JSONValue]]


class FeatureFlagReason(str, Enum):
    OVERRIDE = "override"
    SYNCED = "synced"
    FLAG_MISSING = "flag_missing"
    ERROR = "error"


@dataclass(frozen=True)
class FeatureFlagResult:
    """
    The outcome of reading a single flag from the local store.

    `enabled` follows the same truthiness rules as `Client.is_feature_enabled`,
    `variant` is set for string flags, `value` is the raw flag value as
    `Client.get_feature_flag` returns it and `payload` is the companion
    payload, if any.
    """

    key: str
    enabled: bool
    variant: Optional[str]
    payload: JSONValue
    reason: FeatureFlagReason
    value: Optional[FlagValue] = None

    def get_value(self) -> Optional[FlagValue]:
        if self.reason in (FeatureFlagReason.FLAG_MISSING, FeatureFlagReason.ERROR):
            return None
        return self.value

    @classmethod
    def from_value_and_payload(
        cls,
        key: str,
        value: Optional[FlagValue],
        payload: JSONValue,
        reason: FeatureFlagReason,
        enabled: bool,
    ) -> "FeatureFlagResult":
        if value is None:
            return cls.missing(key)
        variant = value if isinstance(value, str) else None
        return cls(
            key=key,
            enabled=enabled,
            variant=variant,
            payload=payload,
            reason=reason,
            value=value,
        )

    @classmethod
    def missing(cls, key: str) -> "FeatureFlagResult":
        return cls(
            key=key,
            enabled=False,
            variant=None,
            payload=None,
            reason=FeatureFlagReason.FLAG_MISSING,
        )

    @classmethod
    def error(cls, key: str) -> "FeatureFlagResult":
        return cls(
            key=key,
            enabled=False,
            variant=None,
            payload=None,
            reason=FeatureFlagReason.ERROR,
        )


class DecideResponse(TypedDict, total=False):
    featureFlags: Dict[str, FlagValue]
    featureFlagPayloads: NotRequired[Dict[str, JSONValue]]
    errorsWhileComputingFlags: NotRequired[bool]


class FlagsAndPayloads(TypedDict, total=True):
    featureFlags: Dict[str, FlagValue]
    featureFlagPayloads: Dict[str, JSONValue]


def is_false_string(value: str) -> bool:
    return value.casefold() == "false"


def _decode_payload(payload: Any) -> JSONValue:
    # /decide v3 sends payloads as JSON encoded strings
    if isinstance(payload, str):
        try:
            return json.loads(payload)
        except ValueError:
            return payload
    return payload


def to_flags_and_payloads(resp: Any) -> FlagsAndPayloads:
    """
    Convert a /decide response into the flag and payload tables kept by the store.

    Args:
        resp: The decoded JSON body of a /decide?v=3 response.

    Returns:
        A FlagsAndPayloads dict. Flags with a `None` value are skipped.

    Raises:
        ValueError: If the response is not a JSON object or `featureFlags` is not an object.
    """
    if not isinstance(resp, dict):
        raise ValueError("decide response is not an object: %r" % (resp,))

    resp = cast(DecideResponse, resp)
    flags = resp.get("featureFlags") or {}
    payloads = resp.get("featureFlagPayloads") or {}
    if not isinstance(flags, dict) or not isinstance(payloads, dict):
        raise ValueError("featureFlags and featureFlagPayloads must be objects")

    return {
        "featureFlags": {
            key: value for key, value in flags.items() if value is not None
        },
        "featureFlagPayloads": {
            key: _decode_payload(value)
            for key, value in payloads.items()
            if value is not None
        },
    }


class ErrorKind(str, Enum):
    NETWORK = "network"
    HTTP_STATUS = "http_status"
    PARSE = "parse"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class Ok:
    value: Any = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return False

    def __str__(self):
        return "%s: %s" % (self.kind.value, self.error)


Result: TypeAlias = Union[Ok, Err]
