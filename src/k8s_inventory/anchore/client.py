"""Talk to the Anchore Enterprise API.

All requests carry HTTP Basic auth and the ``x-anchore-account`` header.
Uses stdlib ``urllib.request``, no extra dependencies required.

Failures are raised as exceptions and classified afterwards by the pure
helpers at the bottom of this module (``server_is_offline`` and friends),
so callers decide between "retry later" and "give up".
"""

from __future__ import annotations

import base64
import errno
import json
import logging
import socket
import ssl
import threading
import urllib.error
import urllib.request
from typing import Any

from pydantic import BaseModel, ValidationError

from k8s_inventory.config import AnchoreInfo
from k8s_inventory.models import Version
from k8s_inventory.tracker import track_time

logger = logging.getLogger(__name__)

VERSION_PATH = "/version"
REPORT_API_PATH_V1 = "v1/enterprise/kubernetes-inventory"
REPORT_API_PATH_V2 = "v2/kubernetes-inventory"
ID_PLACEHOLDER = "{{id}}"


class AnchoreError(Exception):
    """Raised when a request to Anchore cannot be completed."""


class InvalidResponseError(AnchoreError):
    """Raised when Anchore answers with a body that is not JSON.

    Usually a login page or redirect served by a proxy in front of Anchore.
    """


class APIErrorDetails(BaseModel):
    message: str = ""
    detail: Any = None
    httpcode: int = 0


class ControllerErrorDetails(BaseModel):
    type: str = ""
    title: str = ""
    detail: str = ""
    status: int = 0


class APIClientError(AnchoreError):
    """Anchore responded with a non-2xx status."""

    def __init__(
        self,
        http_status_code: int,
        message: str,
        path: str,
        method: str,
        api_error_details: APIErrorDetails | None = None,
        controller_error_details: ControllerErrorDetails | None = None,
    ) -> None:
        self.http_status_code = http_status_code
        self.message = message
        self.path = path
        self.method = method
        self.api_error_details = api_error_details
        self.controller_error_details = controller_error_details
        super().__init__(str(self))

    def __str__(self) -> str:
        details = self.api_error_details or self.controller_error_details
        suffix = f" {details!r}" if details is not None else ""
        return (
            f"API error({self.http_status_code}): {self.message} "
            f"Path: {self.path!r} Method: {self.method}{suffix}"
        )


class AnchoreClient:
    """Client for one Anchore deployment.

    The inventory API version is probed once per client instance and cached
    for its lifetime.
    """

    def __init__(self, details: AnchoreInfo) -> None:
        self._details = details
        self._base_url = details.url.rstrip("/")
        self._timeout = details.http.timeout_seconds
        self._ssl_context = _build_ssl_context(details.http.insecure)
        self._inventory_path: str | None = None
        self._inventory_path_lock = threading.Lock()

    @property
    def url(self) -> str:
        return self._base_url

    # --- Public API ---

    def get(self, path: str, operation: str = "get") -> bytes:
        return self._request("GET", path, operation=operation)

    def post(
        self,
        body: bytes,
        path: str,
        id: str = "",
        operation: str = "post",
        *,
        account: str | None = None,
        user: str | None = None,
        password: str | None = None,
    ) -> bytes:
        """POST a JSON body; ``{{id}}`` in *path* is replaced with *id*.

        *account*, *user* and *password* override the configured defaults
        for this request only.
        """
        return self._request(
            "POST", path, id=id, body=body, operation=operation,
            account=account, user=user, password=password,
        )

    def get_version(self) -> Version:
        """Fetch the Anchore service version (``GET /version``)."""
        logger.debug("Determining Anchore service version")
        raw = self.get(VERSION_PATH, operation="version get")
        try:
            return Version.model_validate_json(raw or b"{}")
        except ValidationError as e:
            raise AnchoreError(f"failed to parse API version: {e}") from e

    def inventory_api_path(self) -> str:
        """The inventory endpoint for this Anchore, detected on first use."""
        with self._inventory_path_lock:
            if self._inventory_path is None:
                logger.debug("Detecting Anchore API version")
                version = self.get_version()
                try:
                    api_version = int(version.api.version)
                except ValueError as e:
                    raise AnchoreError(
                        f"failed to retrieve API version: {version.api.version!r}"
                    ) from e
                self._inventory_path = (
                    REPORT_API_PATH_V1 if api_version == 1 else REPORT_API_PATH_V2
                )
            return self._inventory_path

    # --- Private ---

    def _build_url(self, path: str, id: str = "") -> str:
        return self._base_url + "/" + path.replace(ID_PLACEHOLDER, id, 1).lstrip("/")

    def _headers(
        self, account: str | None, user: str | None, password: str | None,
    ) -> dict[str, str]:
        username = user if user is not None else self._details.user
        secret = password if password is not None else self._details.password
        token = base64.b64encode(f"{username}:{secret}".encode()).decode("ascii")
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Basic {token}",
            "x-anchore-account": account if account is not None else self._details.account,
        }

    def _request(
        self,
        method: str,
        path: str,
        id: str = "",
        body: bytes | None = None,
        operation: str = "",
        account: str | None = None,
        user: str | None = None,
        password: str | None = None,
    ) -> bytes:
        url = self._build_url(path, id)
        logger.debug("Performing %s to Anchore using endpoint: %s", operation, url)

        req = urllib.request.Request(
            url,
            data=body,
            headers=self._headers(account, user, password),
            method=method,
        )
        with track_time(f"Sent {operation} request to Anchore"):
            try:
                with urllib.request.urlopen(  # noqa: S310
                    req, timeout=self._timeout, context=self._ssl_context,
                ) as resp:
                    status = resp.status
                    raw = resp.read()
            except urllib.error.HTTPError as e:
                raise _api_error(e.code, str(e.reason), _read_error_body(e), path, method, operation) from None

        if status < 200 or status > 299:
            raise _api_error(status, "", raw, path, method, operation)

        _check_json(raw, operation)
        return raw


def _build_ssl_context(insecure: bool) -> ssl.SSLContext | None:
    if not insecure:
        return None
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def _read_error_body(e: urllib.error.HTTPError) -> bytes:
    try:
        return e.read() or b""
    except OSError:
        return b""


def _check_json(raw: bytes, operation: str) -> None:
    if not raw:
        return
    try:
        json.loads(raw)
    except ValueError:
        logger.debug("Anchore %s response body: %r", operation, raw[:512])
        raise InvalidResponseError(
            f"{operation} response from Anchore is not valid json"
        ) from None


def _api_error(
    status: int, reason: str, raw: bytes, path: str, method: str, operation: str,
) -> APIClientError:
    status_text = f"{status} {reason}" if reason else str(status)
    msg = f"{status_text} response from Anchore (during {operation})"
    logger.error(msg)

    api_details: APIErrorDetails | None = None
    controller_details: ControllerErrorDetails | None = None
    payload: Any = None
    if raw:
        try:
            payload = json.loads(raw)
        except ValueError:
            payload = None

    # Depending on where the error is raised inside Anchore, the body is
    # either an API error or a controller (framework) error.
    if isinstance(payload, dict):
        try:
            if "message" in payload or "httpcode" in payload:
                api_details = APIErrorDetails.model_validate(payload)
            elif {"title", "status", "type", "detail"} & payload.keys():
                controller_details = ControllerErrorDetails.model_validate(payload)
        except ValidationError:
            logger.debug("Unrecognized error payload from Anchore: %r", payload)

    return APIClientError(
        http_status_code=status,
        message=msg,
        path=path,
        method=method,
        api_error_details=api_details,
        controller_error_details=controller_details,
    )


# --- Error classification ---

_OFFLINE_ERRNOS = frozenset({
    errno.ENETDOWN,
    errno.ENETUNREACH,
    errno.ENETRESET,
    errno.ECONNABORTED,
    errno.ECONNRESET,
    errno.ETIMEDOUT,
    errno.ECONNREFUSED,
    errno.EHOSTDOWN,
    errno.EHOSTUNREACH,
})

_OFFLINE_HTTP_CODES = frozenset({502, 503, 504})


def server_is_offline(err: BaseException | None) -> bool:
    """True when *err* means Anchore is unreachable right now (retry later)."""
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        if isinstance(err, APIClientError):
            return err.http_status_code in _OFFLINE_HTTP_CODES
        if isinstance(err, (TimeoutError, socket.gaierror, ConnectionError)):
            return True
        if isinstance(err, OSError) and err.errno in _OFFLINE_ERRNOS:
            return True
        if isinstance(err, urllib.error.URLError) and isinstance(err.reason, BaseException):
            err = err.reason
            continue
        err = err.__cause__
    return False


def server_lacks_agent_health_api_support(err: BaseException | None) -> bool:
    """True when Anchore predates the integration health API."""
    if not isinstance(err, APIClientError) or err.controller_error_details is None:
        return False
    detail = err.controller_error_details.detail
    if err.http_status_code == 404 and "The requested URL was not found" in detail:
        return True
    return err.http_status_code == 405 and detail == "Method Not Allowed"


def user_lacks_api_privileges(err: BaseException | None) -> bool:
    if not isinstance(err, APIClientError) or err.api_error_details is None:
        return False
    return (
        err.http_status_code == 403
        and "Not authorized. Requires permissions" in err.api_error_details.message
    )


def incorrect_credentials(err: BaseException | None) -> bool:
    """Unknown user or wrong password."""
    return isinstance(err, APIClientError) and err.http_status_code == 401
