import threading
from typing import Any, Mapping, Optional

from posthog_core.types import (
    FeatureFlagReason,
    FeatureFlagResult,
    FlagsAndPayloads,
    FlagValue,
    JSONValue,
    is_false_string,
)
from posthog_core.utils import clean

PAYLOAD_SUFFIX = "_payload"


def payload_key(key: str) -> str:
    return f"{key}{PAYLOAD_SUFFIX}"


def synced_flag_enabled(value: Any) -> Optional[bool]:
    """
    Truthiness of a server-synced flag value, or None when there is no value.

    Booleans are taken as is, strings are enabled unless they read "false",
    any other non-null value counts as enabled.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return not is_false_string(value)
    return True


def override_flag_enabled(value: Any) -> Optional[bool]:
    """
    Truthiness of an override, or None when the override does not decide it.

    Only booleans and strings decide; anything else falls through to the
    synced value.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return not is_false_string(value)
    return None


class FeatureFlagStore(object):
    """
    The locally cached view of flag assignments.

    Holds the last successfully synced flags and payloads, and a table of
    local overrides that always takes precedence on reads. Reads never touch
    the network. `replace_synced` swaps both synced tables in one step.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._flags: dict[str, FlagValue] = {}
        self._payloads: dict[str, JSONValue] = {}
        self._overrides: dict[str, Any] = {}

    def is_feature_enabled(self, key: str, default: bool = False) -> bool:
        with self._lock:
            override = self._overrides.get(key)
            synced = self._flags.get(key)

        enabled = override_flag_enabled(override)
        if enabled is not None:
            return enabled

        enabled = synced_flag_enabled(synced)
        if enabled is not None:
            return enabled

        return default

    def get_feature_flag(self, key: str) -> Optional[FlagValue]:
        with self._lock:
            override = self._overrides.get(key)
            if override is not None:
                return override
            return self._flags.get(key)

    def get_feature_flag_payload(self, key: str) -> JSONValue:
        with self._lock:
            override = self._overrides.get(payload_key(key))
            if override is not None:
                return override
            return self._payloads.get(key)

    def get_feature_flag_result(self, key: str) -> FeatureFlagResult:
        with self._lock:
            override = self._overrides.get(key)
            override_payload = self._overrides.get(payload_key(key))
            synced = self._flags.get(key)
            synced_payload = self._payloads.get(key)

        payload = synced_payload if override_payload is None else override_payload
        if override is not None:
            enabled = override_flag_enabled(override)
            if enabled is None:
                enabled = bool(synced_flag_enabled(synced))
            return FeatureFlagResult.from_value_and_payload(
                key, override, payload, FeatureFlagReason.OVERRIDE, enabled
            )
        if synced is not None:
            return FeatureFlagResult.from_value_and_payload(
                key,
                synced,
                payload,
                FeatureFlagReason.SYNCED,
                bool(synced_flag_enabled(synced)),
            )
        return FeatureFlagResult.missing(key)

    def get_all_feature_flags(self) -> dict[str, Any]:
        with self._lock:
            flags: dict[str, Any] = dict(self._flags)
            flags.update(
                (key, value)
                for key, value in self._overrides.items()
                if value is not None and not key.endswith(PAYLOAD_SUFFIX)
            )
            return flags

    def override(self, overrides: Mapping[str, Any]):
        cleaned = clean(dict(overrides))
        with self._lock:
            self._overrides.update(cleaned)

    def replace_synced(self, flags_and_payloads: FlagsAndPayloads):
        flags = dict(flags_and_payloads["featureFlags"])
        payloads = dict(flags_and_payloads["featureFlagPayloads"])
        with self._lock:
            self._flags = flags
            self._payloads = payloads

    def clear(self):
        with self._lock:
            self._flags = {}
            self._payloads = {}
            self._overrides = {}

    def __len__(self):
        with self._lock:
            return len(self._flags)
