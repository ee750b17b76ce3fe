import json
import logging
from datetime import date, datetime
from gzip import GzipFile
from io import BytesIO
from typing import Any, Optional, Union

import requests
from dateutil.tz import tzutc
from urllib3.util.retry import Retry

from posthog_core.config import HOST_EU, HOST_US
from posthog_core.utils import remove_trailing_slash
from posthog_core.version import VERSION

DEFAULT_HOST = HOST_US
USER_AGENT = "posthog-core/" + VERSION

BATCH_PATH = "/batch"
DECIDE_PATH = "/decide?v=3"


def build_session() -> requests.Session:
    """
    A session that retries failed connections.

    Read errors are only retried for idempotent methods by urllib3, so a POST
    that reached the server is never sent twice from here.
    """
    adapter = requests.adapters.HTTPAdapter(
        max_retries=Retry(
            total=2,
            connect=2,
            read=2,
        )
    )
    session = requests.sessions.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def determine_server_host(host: Optional[str]) -> str:
    """Determines the server host to use."""
    host_or_default = host or DEFAULT_HOST
    trimmed_host = remove_trailing_slash(host_or_default)
    if trimmed_host in ("https://app.posthog.com", "https://us.posthog.com"):
        return HOST_US
    elif trimmed_host == "https://eu.posthog.com":
        return HOST_EU
    else:
        return trimmed_host


def post(
    session: requests.Session,
    api_key: str,
    host: Optional[str] = None,
    path=None,
    gzip: bool = False,
    timeout: float = 15,
    **kwargs,
) -> requests.Response:
    """Post the `kwargs` to the API"""
    log = logging.getLogger("posthog_core")
    body = kwargs
    body["sentAt"] = datetime.now(tz=tzutc()).isoformat()
    url = remove_trailing_slash(host or DEFAULT_HOST) + path
    body["api_key"] = api_key
    data = json.dumps(body, cls=DatetimeSerializer)
    log.debug("making request: %s to url: %s", data, url)
    headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
    if gzip:
        headers["Content-Encoding"] = "gzip"
        buf = BytesIO()
        with GzipFile(fileobj=buf, mode="w") as gz:
            # 'data' was produced by json.dumps(),
            # whose default encoding is utf-8.
            gz.write(data.encode("utf-8"))
        data = buf.getvalue()

    return session.post(url, data=data, headers=headers, timeout=timeout)


def _process_response(
    res: requests.Response, success_message: str, *, return_json: bool = True
) -> Union[requests.Response, Any]:
    log = logging.getLogger("posthog_core")
    if 200 <= res.status_code < 300:
        log.debug(success_message)
        return res.json() if return_json else res
    try:
        payload = res.json()
        log.debug("received response: %s", payload)
        raise APIError(res.status_code, payload["detail"])
    except (KeyError, TypeError, ValueError):
        raise APIError(res.status_code, res.text)


def batch_post(
    session: requests.Session,
    api_key: str,
    host: Optional[str] = None,
    gzip: bool = False,
    timeout: float = 15,
    **kwargs,
) -> requests.Response:
    """Post the `kwargs` to the batch API endpoint for events"""
    res = post(session, api_key, host, BATCH_PATH, gzip, timeout, **kwargs)
    return _process_response(
        res, success_message="data uploaded successfully", return_json=False
    )


def decide(
    session: requests.Session,
    api_key: str,
    host: Optional[str] = None,
    gzip: bool = False,
    timeout: float = 3,
    **kwargs,
) -> Any:
    """Post the `kwargs` to the decide API endpoint"""
    res = post(session, api_key, host, DECIDE_PATH, gzip, timeout, **kwargs)
    return _process_response(res, success_message="Feature flags decided successfully")


class APIError(Exception):
    def __init__(self, status: Union[int, str], message: str):
        self.message = message
        self.status = status

    def __str__(self):
        msg = "[PostHog] {0} ({1})"
        return msg.format(self.message, self.status)


class DatetimeSerializer(json.JSONEncoder):
    def default(self, obj: Any):
        if isinstance(obj, (date, datetime)):
            return obj.isoformat()

        return json.JSONEncoder.default(self, obj)
