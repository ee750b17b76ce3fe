from posthog_core.client import Client, LifecycleState
from posthog_core.config import HOST_EU, HOST_US, Config
from posthog_core.event import EventRecord
from posthog_core.types import (
    FeatureFlagReason,
    FeatureFlagResult,
    FlagValue,
    JSONValue,
)
from posthog_core.version import VERSION

__version__ = VERSION

__all__ = [
    "Client",
    "Config",
    "EventRecord",
    "FeatureFlagReason",
    "FeatureFlagResult",
    "FlagValue",
    "HOST_EU",
    "HOST_US",
    "JSONValue",
    "LifecycleState",
    "VERSION",
]
