import atexit
import functools
import logging
import threading
import traceback
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from posthog_core.config import Config
from posthog_core.consumer import Consumer
from posthog_core.event import (
    ANON_DISTINCT_ID,
    APPLICATION_BACKGROUNDED,
    APPLICATION_OPENED,
    CREATE_ALIAS,
    EXCEPTION,
    EXCEPTION_LEVEL,
    EXCEPTION_MESSAGE,
    EXCEPTION_STACKTRACE,
    EXCEPTION_TYPE,
    FEATURE_FLAG,
    FEATURE_FLAG_CALLED,
    FEATURE_FLAG_RESPONSE,
    GROUP_IDENTIFY,
    GROUP_KEY,
    GROUP_SET,
    GROUP_TYPE,
    GROUPS,
    IDENTIFY,
    SCREEN,
    SCREEN_NAME,
    SET,
    SET_ONCE,
    build_event,
)
from posthog_core.event_queue import EventQueue
from posthog_core.feature_flags import FeatureFlagStore
from posthog_core.identity import IdentityStore, merge_groups
from posthog_core.transport import Transport
from posthog_core.types import FeatureFlagResult, FlagValue, JSONValue
from posthog_core.utils import SizeLimitedDict

MAX_DICT_SIZE = 50_000


class LifecycleState(str, Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    CLOSED = "closed"


def _when_active(default: Any = None, default_factory: Optional[Callable] = None):
    """
    Run the wrapped operation only while the client is active.

    Outside the active state, or when the operation raises, the default is
    returned instead. Errors are logged at debug level and never reach the
    caller.
    """

    def fallback():
        return default_factory() if default_factory else default

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(self, *args, **kwargs):
            if self._state is not LifecycleState.ACTIVE:
                return fallback()
            try:
                return fn(self, *args, **kwargs)
            except Exception:
                self.log.debug("Error in %s", fn.__name__, exc_info=True)
                return fallback()

        return wrapper

    return decorator


def _completed(result: Any) -> Future:
    future: Future = Future()
    future.set_result(result)
    return future


class Client(object):
    """
    Collects analytics events and keeps a local view of feature flags.

    Events are queued in memory and delivered in batches by a background
    thread; flags are synced from the server and served from memory. A
    client goes through `setup()` once and `close()` once, and every
    operation is a silent no-op outside of that window.

    Examples:
        ```python
        from posthog_core import Client, Config

        client = Client(Config(api_key="<ph_project_api_key>")).setup()
        client.capture("button clicked", {"button": "submit"})
        if client.is_feature_enabled("new-checkout"):
            ...
        client.close()
        ```
    """

    log = logging.getLogger("posthog_core")

    def __init__(self, config: Config):
        self.config = config
        self._state = LifecycleState.UNINITIALIZED
        self._state_lock = threading.Lock()

        self.queue = EventQueue(config.max_queue_size)
        self.identity = IdentityStore(opted_out=config.opt_out)
        self.feature_flags = FeatureFlagStore()
        self.distinct_ids_feature_flags_reported = SizeLimitedDict(MAX_DICT_SIZE, set)
        self._reported_lock = threading.Lock()

        self.transport: Optional[Transport] = None
        self.consumer: Optional[Consumer] = None
        self.executor: Optional[ThreadPoolExecutor] = None
        self._worker_local = threading.local()

        self._apply_debug(config.debug)

    @property
    def state(self) -> LifecycleState:
        return self._state

    # Lifecycle

    def setup(self) -> "Client":
        """
        Start the client: open the transport, start the background flush and
        preload feature flags if configured. Calling it again is a no-op.

        Category:
            Initialization
        """
        with self._state_lock:
            if self._state is not LifecycleState.UNINITIALIZED:
                self.log.debug("Already initialized, ignoring setup call")
                return self
            try:
                self.transport = Transport(self.config)
                self.executor = ThreadPoolExecutor(
                    max_workers=2,
                    thread_name_prefix="posthog-core",
                    initializer=self._mark_worker,
                )
                self.consumer = Consumer(
                    self.queue,
                    self.transport,
                    flush_interval=self.config.flush_interval_seconds,
                    max_batch_size=self.config.max_batch_size,
                )
                self.consumer.start()
            except Exception:
                self.log.exception("Failed to initialize")
                return self
            self._state = LifecycleState.ACTIVE

        # Flush on interpreter exit. It is still best to call close() yourself.
        atexit.register(self.close)
        self.log.debug("Initialized with host: %s", self.transport.host)

        if self.config.capture_application_lifecycle_events:
            self.capture(APPLICATION_OPENED)
        if self.config.preload_feature_flags:
            self._submit(self._reload_feature_flags, None)
        return self

    def is_setup(self) -> bool:
        return self._state is LifecycleState.ACTIVE

    def close(self):
        """
        Deliver what is still queued and release all resources.

        Blocks until the final flush is done. Events that still cannot be
        delivered are discarded with a warning. The client can not be set up
        again afterwards.

        Category:
            Initialization
        """
        with self._state_lock:
            if self._state is not LifecycleState.ACTIVE:
                return
            if self.config.capture_application_lifecycle_events:
                try:
                    self._enqueue(APPLICATION_BACKGROUNDED, flush=False)
                except Exception:
                    self.log.debug("Error capturing lifecycle event", exc_info=True)
            self._state = LifecycleState.CLOSED

        try:
            self._close_step(self._final_flush)
            # a thread can not wait for its own pool
            on_worker = getattr(self._worker_local, "active", False)
            # flag syncs still queued see CLOSED and only run their callbacks
            self._close_step(self.executor.shutdown, not on_worker)
            self._close_step(self.transport.close)
            self._close_step(self.feature_flags.clear)
        finally:
            atexit.unregister(self.close)

    def _close_step(self, fn: Callable, *args):
        try:
            fn(*args)
        except Exception:
            self.log.debug("Error in close", exc_info=True)

    def _final_flush(self):
        self.consumer.pause()
        if threading.current_thread() is not self.consumer:
            self.consumer.join()
        self.consumer.upload(block=True)

        dropped = self.queue.clear()
        if dropped:
            self.log.warning(
                "%d events could not be delivered before close and were discarded",
                dropped,
            )

    def _mark_worker(self):
        self._worker_local.active = True

    @_when_active()
    def set_debug(self, enabled: bool):
        self.config.debug = enabled
        self._apply_debug(enabled)

    def _apply_debug(self, debug: bool):
        if debug:
            # Ensures that debug level messages are logged when debug mode is on.
            # Otherwise, defaults to WARNING level.
            logging.basicConfig()
            self.log.setLevel(logging.DEBUG)
        else:
            self.log.setLevel(logging.WARNING)

    # Capture

    @_when_active(default=False)
    def capture(
        self,
        event: str,
        properties: Optional[Mapping[str, Any]] = None,
        groups: Optional[Mapping[str, str]] = None,
    ) -> bool:
        """
        Queue an event. Returns whether it was queued.

        Args:
            event: The event name.
            properties: Properties for this event. They win over super properties.
            groups: Group memberships for this event only, on top of those set by `group()`.

        Examples:
            ```python
            client.capture("movie played", {"movie_id": "123", "category": "romcom"})
            ```

        Category:
            Capture
        """
        return self._enqueue(event, properties, groups)

    @_when_active(default=False)
    def screen(
        self, screen_name: str, properties: Optional[Mapping[str, Any]] = None
    ) -> bool:
        """
        Capture a `$screen` event for `screen_name`.

        Category:
            Capture
        """
        properties = {SCREEN_NAME: screen_name, **(properties or {})}
        return self._enqueue(SCREEN, properties)

    @_when_active(default=False)
    def capture_exception(
        self,
        exception: BaseException,
        level: str = "error",
        properties: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """
        Capture an `$exception` event with the type, message and stack trace of `exception`.

        Examples:
            ```python
            try:
                1 / 0
            except Exception as e:
                client.capture_exception(e, properties={"page": "checkout"})
            ```

        Category:
            Error Tracking
        """
        stacktrace = "".join(
            traceback.format_exception(
                type(exception), exception, exception.__traceback__
            )
        )
        exception_properties = {
            EXCEPTION_TYPE: type(exception).__name__,
            EXCEPTION_MESSAGE: str(exception) or "No message",
            EXCEPTION_STACKTRACE: stacktrace,
            EXCEPTION_LEVEL: level.lower(),
            **(properties or {}),
        }
        return self._enqueue(EXCEPTION, exception_properties)

    def _enqueue(
        self,
        event: str,
        properties: Optional[Mapping[str, Any]] = None,
        groups: Optional[Mapping[str, str]] = None,
        flush: bool = True,
    ) -> bool:
        snapshot = self.identity.snapshot()
        if snapshot.opted_out:
            return False

        event_groups = merge_groups(snapshot.super_properties, groups)
        if event_groups:
            properties = {**(properties or {}), GROUPS: event_groups}

        record = build_event(
            event,
            properties,
            snapshot.super_properties,
            snapshot.distinct_id,
            snapshot.session_id,
        )
        size = self.queue.put(record)
        if size is None:
            return False
        self.log.debug("enqueued %s.", event)

        if flush and size >= self.config.flush_at:
            self._submit(self.consumer.upload)
        return True

    def _submit(self, fn: Callable, *args) -> Future:
        try:
            return self.executor.submit(fn, *args)
        except RuntimeError:
            # executor already shut down
            return _completed(False)

    # Identification

    @_when_active(default=False)
    def identify(
        self,
        distinct_id: str,
        user_properties: Optional[Mapping[str, Any]] = None,
        user_properties_set_once: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """
        Attribute this and all later events to `distinct_id`.

        Captures an `$identify` event linking the previous distinct id through
        `$anon_distinct_id`, and reloads feature flags when the id changed.

        Args:
            distinct_id: The id of the user, e.g. from your database.
            user_properties: Person properties to set.
            user_properties_set_once: Person properties to set if they are not set yet.

        Examples:
            ```python
            client.identify("user_123", {"email": "user@example.com"})
            ```

        Category:
            Identification
        """
        if not distinct_id:
            self.log.warning("identify called without a distinct_id, ignoring")
            return False

        distinct_id = str(distinct_id)
        previous = self.identity.identify(distinct_id)

        properties: Dict[str, Any] = {ANON_DISTINCT_ID: previous}
        if user_properties:
            properties[SET] = dict(user_properties)
        if user_properties_set_once:
            properties[SET_ONCE] = dict(user_properties_set_once)
        queued = self._enqueue(IDENTIFY, properties)

        if previous != distinct_id:
            # flag targeting may depend on the person
            self._submit(self._reload_feature_flags, None)
        return queued

    @_when_active(default=False)
    def alias(self, alias: str) -> bool:
        """
        Link `alias` to the current distinct id with a `$create_alias` event.

        The current distinct id stays as it is.

        Category:
            Identification
        """
        return self._enqueue(
            CREATE_ALIAS,
            {"distinct_id": self.identity.distinct_id, "alias": alias},
        )

    @_when_active()
    def reset(self):
        """
        Forget the current user: new anonymous and session ids, no super
        properties or groups, no synced or overridden feature flags.

        Category:
            Identification
        """
        anonymous_id = self.identity.reset()
        self.feature_flags.clear()
        self.log.debug("Reset identity, new anonymous id %s", anonymous_id)

    @_when_active()
    def get_distinct_id(self) -> Optional[str]:
        return self.identity.distinct_id

    @_when_active()
    def get_anonymous_id(self) -> Optional[str]:
        return self.identity.anonymous_id

    @_when_active()
    def get_session_id(self) -> Optional[str]:
        return self.identity.session_id

    @_when_active(default=False)
    def set_person_properties(self, properties: Mapping[str, Any]) -> bool:
        """
        Set properties on the current person, overwriting existing values.

        Category:
            Identification
        """
        return self._enqueue(SET, {SET: dict(properties)})

    @_when_active(default=False)
    def set_person_properties_once(self, properties: Mapping[str, Any]) -> bool:
        """
        Set properties on the current person only where they are not set yet.

        Category:
            Identification
        """
        return self._enqueue(SET_ONCE, {SET_ONCE: dict(properties)})

    @_when_active(default=False)
    def group(
        self,
        group_type: str,
        group_key: str,
        group_properties: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """
        Associate the current user with a group.

        Captures a `$groupidentify` event and adds the membership to the
        `$groups` property of every later event.

        Examples:
            ```python
            client.group("company", "company_id_in_your_db", {"name": "Awesome Inc."})
            ```

        Category:
            Identification
        """
        properties: Dict[str, Any] = {GROUP_TYPE: group_type, GROUP_KEY: group_key}
        if group_properties:
            properties[GROUP_SET] = dict(group_properties)
        queued = self._enqueue(GROUP_IDENTIFY, properties)

        self.identity.add_group(group_type, str(group_key))
        return queued

    # Super properties

    @_when_active()
    def register(self, key: str, value: Any):
        """
        Attach `key` to every event captured from now on.

        Category:
            Super Properties
        """
        self.identity.register({key: value})

    @_when_active()
    def register_all(self, properties: Mapping[str, Any]):
        self.identity.register(properties)

    @_when_active()
    def unregister(self, key: str):
        self.identity.unregister(key)

    # Opt out

    @_when_active()
    def opt_out(self):
        """
        Stop capturing events. Events already queued are still delivered.

        Category:
            Privacy
        """
        self.identity.set_opted_out(True)

    @_when_active()
    def opt_in(self):
        self.identity.set_opted_out(False)

    @_when_active(default=False)
    def is_opted_out(self) -> bool:
        return self.identity.opted_out

    # Delivery

    @_when_active(default=False)
    def flush(self) -> bool:
        """
        Deliver queued events now, blocking until the request finished.

        Returns whether everything that was queued got delivered. When a
        background flush is already running this returns False at once and
        the events go out with that flush or the next one.

        Examples:
            ```python
            client.capture("event_name")
            client.flush()  # Ensures the event is sent immediately
            ```

        Category:
            Capture
        """
        return self.consumer.upload()

    # Feature flags

    def is_feature_enabled(self, key: str, default: bool = False) -> bool:
        """
        Whether the flag `key` is on for the current user.

        Local overrides win over synced values; `default` is returned when
        neither exists. Never waits on the network.

        Examples:
            ```python
            if client.is_feature_enabled("beta-feature"):
                ...
            ```

        Category:
            Feature Flags
        """
        if self._state is not LifecycleState.ACTIVE:
            return default
        try:
            enabled = self.feature_flags.is_feature_enabled(key, default)
            self._capture_feature_flag_called(
                key, self.feature_flags.get_feature_flag(key)
            )
            return enabled
        except Exception:
            self.log.debug("Error in is_feature_enabled", exc_info=True)
            return default

    @_when_active()
    def get_feature_flag(self, key: str) -> Optional[FlagValue]:
        """
        The raw value of flag `key`: a boolean, a variant string, or None when unknown.

        Category:
            Feature Flags
        """
        value = self.feature_flags.get_feature_flag(key)
        self._capture_feature_flag_called(key, value)
        return value

    @_when_active()
    def get_feature_flag_payload(self, key: str) -> JSONValue:
        """
        The JSON payload attached to flag `key`, or None.

        Category:
            Feature Flags
        """
        return self.feature_flags.get_feature_flag_payload(key)

    @_when_active(default_factory=dict)
    def get_all_feature_flags(self) -> Dict[str, Any]:
        return self.feature_flags.get_all_feature_flags()

    def get_feature_flag_result(self, key: str) -> FeatureFlagResult:
        """
        Value, payload and the source of flag `key` in one call.

        Category:
            Feature Flags
        """
        if self._state is not LifecycleState.ACTIVE:
            return FeatureFlagResult.error(key)
        try:
            result = self.feature_flags.get_feature_flag_result(key)
            self._capture_feature_flag_called(key, result.get_value())
            return result
        except Exception:
            self.log.debug("Error in get_feature_flag_result", exc_info=True)
            return FeatureFlagResult.error(key)

    @_when_active()
    def override_feature_flags(self, flags: Mapping[str, Any]):
        """
        Force flag values locally, e.g. in tests. Use `<key>_payload` to override a payload.

        Overrides stay until `reset()` or `close()` and are never sent to the server.

        Examples:
            ```python
            client.override_feature_flags({"beta-feature": True, "beta-feature_payload": {"a": 1}})
            ```

        Category:
            Feature Flags
        """
        self.feature_flags.override(flags)

    def reload_feature_flags(
        self, callback: Optional[Callable[[], Any]] = None
    ) -> "Future[bool]":
        """
        Sync feature flags in the background.

        Returns a future that resolves to whether the sync succeeded; it
        never raises. The optional `callback` runs exactly once, after the
        store has been updated or left untouched on failure, including
        when the client is closed before the sync got to run.

        Examples:
            ```python
            client.reload_feature_flags().result(timeout=5)
            ```

        Category:
            Feature Flags
        """
        if self._state is not LifecycleState.ACTIVE:
            self._run_callback(callback)
            return _completed(False)
        try:
            return self.executor.submit(self._reload_feature_flags, callback)
        except Exception:
            # also reached when close() shut the executor down meanwhile
            self.log.debug("Error in reload_feature_flags", exc_info=True)
            self._run_callback(callback)
            return _completed(False)

    def _reload_feature_flags(self, callback: Optional[Callable[[], Any]]) -> bool:
        try:
            if self._state is not LifecycleState.ACTIVE:
                return False
            return self._load_feature_flags()
        except Exception:
            self.log.debug(
                "[FEATURE FLAGS] Error loading feature flags", exc_info=True
            )
            return False
        finally:
            self._run_callback(callback)

    def _run_callback(self, callback: Optional[Callable[[], Any]]):
        if callback is None:
            return
        try:
            callback()
        except Exception:
            self.log.debug("Error in feature flag callback", exc_info=True)

    def _load_feature_flags(self) -> bool:
        snapshot = self.identity.snapshot()
        result = self.transport.sync_flags(snapshot.distinct_id, snapshot.groups)
        if not result.ok:
            self.log.debug("[FEATURE FLAGS] Keeping cached flags: %s", result)
            return False

        if self.identity.distinct_id != snapshot.distinct_id:
            # identify() or reset() ran meanwhile and scheduled its own sync
            self.log.debug("[FEATURE FLAGS] Discarding flags of a previous identity")
            return False
        if self._state is not LifecycleState.ACTIVE:
            return False

        self.feature_flags.replace_synced(result.value)
        self.log.debug(
            "[FEATURE FLAGS] Loaded %d feature flags", len(self.feature_flags)
        )
        return True

    def _capture_feature_flag_called(self, key: str, response: Optional[FlagValue]):
        if not self.config.send_feature_flag_event:
            return

        distinct_id = self.identity.distinct_id
        feature_flag_reported_key = (
            f"{key}_{'::null::' if response is None else str(response)}"
        )
        with self._reported_lock:
            reported = self.distinct_ids_feature_flags_reported[distinct_id]
            if feature_flag_reported_key in reported:
                return
            reported.add(feature_flag_reported_key)

        self._enqueue(
            FEATURE_FLAG_CALLED,
            {
                FEATURE_FLAG: key,
                FEATURE_FLAG_RESPONSE: response,
                f"$feature/{key}": response,
            },
        )
