from dataclasses import dataclass

HOST_US = "https://us.i.posthog.com"
HOST_EU = "https://eu.i.posthog.com"


@dataclass
class Config:
    """
    Settings for a `Client` instance.

    Everything except `debug` is read once at construction and treated as
    immutable for the lifetime of the client; use `Client.set_debug` to
    toggle debug logging at runtime.

    Args:
        api_key: The project API key (token), public.
        host: The ingestion host. Legacy app hosts are mapped to the matching ingestion host.
        debug: Whether to log at DEBUG level.
        capture_application_lifecycle_events: Capture `Application Opened` at setup and
            `Application Backgrounded` at close.
        capture_screen_views: Declared for parity with mobile SDKs. Screens are only
            captured through explicit `screen()` calls.
        send_feature_flag_event: Capture `$feature_flag_called` the first time a flag value
            is read for a distinct id.
        preload_feature_flags: Sync feature flags once at setup.
        flush_at: Queue length that triggers an asynchronous flush.
        flush_interval_seconds: Period of the background flush.
        max_queue_size: Events beyond this are rejected until the queue drains.
        max_batch_size: Maximum events sent in a single request.
        opt_out: Start opted out of capturing.
        gzip: Compress request bodies.
        timeout: Timeout in seconds for batch requests.
        feature_flags_request_timeout_seconds: Timeout in seconds for flag sync requests.
    """

    api_key: str
    host: str = HOST_US
    debug: bool = False
    capture_application_lifecycle_events: bool = True
    capture_screen_views: bool = False
    send_feature_flag_event: bool = True
    preload_feature_flags: bool = True
    flush_at: int = 20
    flush_interval_seconds: float = 30
    max_queue_size: int = 1000
    max_batch_size: int = 50
    opt_out: bool = False
    gzip: bool = False
    timeout: float = 15
    feature_flags_request_timeout_seconds: float = 3

    def __post_init__(self):
        if not self.api_key:
            raise ValueError("api_key is required")
        for name in ("flush_at", "max_queue_size", "max_batch_size"):
            value = getattr(self, name)
            if value < 1:
                raise ValueError("%s must be at least 1, got %r" % (name, value))
        if self.flush_interval_seconds <= 0:
            raise ValueError(
                "flush_interval_seconds must be positive, got %r"
                % self.flush_interval_seconds
            )
