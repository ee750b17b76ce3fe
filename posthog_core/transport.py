import logging
from typing import Mapping, Optional, Sequence

import requests

from posthog_core.config import Config
from posthog_core.event import EventRecord
from posthog_core.request import (
    APIError,
    batch_post,
    build_session,
    decide,
    determine_server_host,
)
from posthog_core.types import Err, ErrorKind, Ok, Result, to_flags_and_payloads


class Transport(object):
    """
    Delivers batches and fetches flag assignments over HTTP.

    Neither call raises: outcomes are reported as `Ok` / `Err(kind)` so the
    caller decides how to recover (requeue the batch, keep cached flags).
    """

    log = logging.getLogger("posthog_core")

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.api_key = config.api_key
        self.host = determine_server_host(config.host)
        self.gzip = config.gzip
        self.timeout = config.timeout
        self.feature_flags_request_timeout_seconds = (
            config.feature_flags_request_timeout_seconds
        )
        self.session = session or build_session()
        self.closed = False

    def deliver_batch(self, records: Sequence[EventRecord]) -> Result:
        """Send `records` as a single batch request. The batch is all or nothing."""
        if self.closed:
            return Err(ErrorKind.UNEXPECTED, RuntimeError("transport is closed"))
        try:
            batch_post(
                self.session,
                self.api_key,
                self.host,
                gzip=self.gzip,
                timeout=self.timeout,
                batch=[record.to_message() for record in records],
            )
        except APIError as e:
            self.log.warning("error uploading %d events: %s", len(records), e)
            return Err(ErrorKind.HTTP_STATUS, e)
        except requests.RequestException as e:
            self.log.warning("error uploading %d events: %s", len(records), e)
            return Err(ErrorKind.NETWORK, e)
        except Exception as e:
            self.log.exception("unexpected error uploading %d events", len(records))
            return Err(ErrorKind.UNEXPECTED, e)

        self.log.debug("uploaded %d events", len(records))
        return Ok(len(records))

    def sync_flags(
        self, distinct_id: str, groups: Optional[Mapping[str, str]] = None
    ) -> Result:
        """Fetch flags for `distinct_id`. On success the value is a `FlagsAndPayloads`."""
        if self.closed:
            return Err(ErrorKind.UNEXPECTED, RuntimeError("transport is closed"))

        request_data = {"distinct_id": distinct_id}
        if groups:
            request_data["groups"] = dict(groups)

        try:
            resp_data = decide(
                self.session,
                self.api_key,
                self.host,
                gzip=self.gzip,
                timeout=self.feature_flags_request_timeout_seconds,
                **request_data,
            )
            flags_and_payloads = to_flags_and_payloads(resp_data)
        except APIError as e:
            self.log.debug("[FEATURE FLAGS] Error loading feature flags: %s", e)
            return Err(ErrorKind.HTTP_STATUS, e)
        except requests.JSONDecodeError as e:
            self.log.debug("[FEATURE FLAGS] Unable to parse decide response: %s", e)
            return Err(ErrorKind.PARSE, e)
        except requests.RequestException as e:
            self.log.debug("[FEATURE FLAGS] Error loading feature flags: %s", e)
            return Err(ErrorKind.NETWORK, e)
        except ValueError as e:
            self.log.debug("[FEATURE FLAGS] Unable to parse decide response: %s", e)
            return Err(ErrorKind.PARSE, e)
        except Exception as e:
            self.log.debug("[FEATURE FLAGS] Unexpected error", exc_info=True)
            return Err(ErrorKind.UNEXPECTED, e)

        return Ok(flags_and_payloads)

    def close(self):
        """Release the HTTP session. Later calls return `Err`."""
        if self.closed:
            return
        self.closed = True
        self.session.close()
