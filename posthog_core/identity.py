import logging
import threading
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from uuid import uuid4

from posthog_core.event import GROUPS
from posthog_core.types import Properties
from posthog_core.utils import clean


@dataclass(frozen=True)
class IdentitySnapshot:
    anonymous_id: str
    distinct_id: str
    session_id: str
    super_properties: Properties
    opted_out: bool

    @property
    def groups(self) -> dict[str, str]:
        return dict(self.super_properties.get(GROUPS) or {})


class IdentityStore(object):
    """
    Holds who events are attributed to, the super properties attached to every
    event and the opt-out switch. All reads return copies.
    """

    log = logging.getLogger("posthog_core")

    def __init__(self, opted_out: bool = False):
        self._lock = threading.Lock()
        self._anonymous_id = str(uuid4())
        self._distinct_id = self._anonymous_id
        self._session_id = str(uuid4())
        self._super_properties: dict[str, Any] = {}
        self._opted_out = opted_out

    def snapshot(self) -> IdentitySnapshot:
        with self._lock:
            return IdentitySnapshot(
                anonymous_id=self._anonymous_id,
                distinct_id=self._distinct_id,
                session_id=self._session_id,
                super_properties=self._copy_super_properties(),
                opted_out=self._opted_out,
            )

    @property
    def distinct_id(self) -> str:
        with self._lock:
            return self._distinct_id

    @property
    def anonymous_id(self) -> str:
        with self._lock:
            return self._anonymous_id

    @property
    def session_id(self) -> str:
        with self._lock:
            return self._session_id

    @property
    def opted_out(self) -> bool:
        with self._lock:
            return self._opted_out

    def set_opted_out(self, opted_out: bool):
        with self._lock:
            self._opted_out = opted_out

    def identify(self, distinct_id: str) -> str:
        """Switch to `distinct_id` and return the previous distinct id."""
        with self._lock:
            previous = self._distinct_id
            self._distinct_id = distinct_id
            return previous

    def reset(self) -> str:
        """Forget the identity, super properties and groups. Returns the new anonymous id."""
        with self._lock:
            self._anonymous_id = str(uuid4())
            self._distinct_id = self._anonymous_id
            self._session_id = str(uuid4())
            self._super_properties = {}
            return self._anonymous_id

    def register(self, properties: Mapping[str, Any]):
        """Merge into the super properties; a `$groups` that is no mapping is dropped."""
        cleaned = clean(dict(properties))
        if GROUPS in cleaned and not isinstance(cleaned[GROUPS], dict):
            self.log.warning(
                "%s must be a mapping of group type to key, ignoring %r",
                GROUPS,
                cleaned[GROUPS],
            )
            del cleaned[GROUPS]
        with self._lock:
            self._super_properties.update(cleaned)

    def unregister(self, key: str):
        with self._lock:
            self._super_properties.pop(key, None)

    def add_group(self, group_type: str, group_key: str) -> dict[str, str]:
        """Record membership of `group_type` and return all current memberships."""
        with self._lock:
            groups = dict(self._super_properties.get(GROUPS) or {})
            groups[group_type] = group_key
            self._super_properties[GROUPS] = groups
            return dict(groups)

    def _copy_super_properties(self) -> Properties:
        props = dict(self._super_properties)
        if GROUPS in props:
            props[GROUPS] = dict(props[GROUPS])
        return props


def merge_groups(
    super_properties: Mapping[str, Any], groups: Optional[Mapping[str, str]]
) -> Optional[dict[str, str]]:
    """Memberships for a single event: registered groups overlaid with `groups`."""
    if not groups:
        return None
    merged = dict(super_properties.get(GROUPS) or {})
    merged.update(groups)
    return merged
