"""
hosted.py — Hosted repository provider

Stores the vault as a file in a private repository through a GitHub-style
"contents" REST API:

  GET  /repos/{owner}/{repo}/contents/{path}   -> {"sha", "content" (base64)}
  PUT  /repos/{owner}/{repo}/contents/{path}   with {"content", "sha"?}

The blob sha is the revision marker. The API itself refuses a PUT whose
sha is stale (409) or missing for an existing file (422), which gives the
compare-and-swap the provider contract requires.

The repository must be private and carry an empty STRONGBOX_REPO file.
"""

from __future__ import annotations
import base64
import json
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, Optional, Tuple

from ..errors import ConfigurationError, ConflictError, NotFoundError, TransportError
from .base import RemoteSnapshot, call_with_timeout

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
REPO_MARKER = "STRONGBOX_REPO"
DEFAULT_TIMEOUT = 30.0


def _message_of(body: bytes) -> str:
    try:
        parsed = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return "No message provided"
    if isinstance(parsed, dict) and isinstance(parsed.get("message"), str):
        return parsed["message"]
    return "No message provided"


class HostedRepositoryProvider:
    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        object_name: str,
        name: str = "hosted",
        api_url: str = DEFAULT_API_URL,
        branch: Optional[str] = None,
    ):
        self.owner = owner
        self.repo = repo
        self._token = token
        self.object_name = object_name
        self.api_url = api_url.rstrip("/")
        self.branch = branch
        self.provider_id = f"hosted:{name}"

    def __repr__(self) -> str:
        return f"HostedRepositoryProvider({self.owner}/{self.repo}, {self.object_name!r})"

    # -- HTTP plumbing ------------------------------------------------------

    def _url(self, path: str, query: Optional[Dict[str, str]] = None) -> str:
        url = f"{self.api_url}/{path}"
        if query:
            url += "?" + urllib.parse.urlencode(query)
        return url

    def _contents_path(self, name: str) -> str:
        return f"repos/{self.owner}/{self.repo}/contents/{urllib.parse.quote(name)}"

    def _request(
        self,
        method: str,
        url: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Tuple[int, Any]:
        """
        Perform one API call and return (status, parsed JSON body).

        HTTP error statuses are returned, not raised, so callers can map them
        to the contract's errors; network failures raise TransportError.
        """
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"token {self._token}",
            "User-Agent": "strongbox-sync",
        }
        data = None
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        req = urllib.request.Request(url, data=data, headers=headers, method=method)
        logger.debug("%s %s", method, url)
        try:
            with urllib.request.urlopen(req, timeout=timeout or DEFAULT_TIMEOUT) as response:
                status = response.status
                body = response.read()
        except urllib.error.HTTPError as exc:
            status = exc.code
            body = exc.read() or b""
        except (socket.timeout, TimeoutError) as exc:
            raise TransportError(f"{method} {url}", timeout=True) from exc
        except urllib.error.URLError as exc:
            if isinstance(exc.reason, (socket.timeout, TimeoutError)):
                raise TransportError(f"{method} {url}", timeout=True) from exc
            raise TransportError(f"{method} {url}: {exc.reason}") from exc

        if status in (401, 403):
            raise TransportError(f"credentials rejected ({status}): {_message_of(body)}")
        if status >= 500:
            raise TransportError(f"{method} {url} -> {status}: {_message_of(body)}")
        if not body:
            return status, None
        try:
            return status, json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise TransportError(f"{method} {url}: response is not JSON") from exc

    # -- contract -----------------------------------------------------------

    def _fetch(self, timeout: Optional[float]) -> RemoteSnapshot:
        query = {"ref": self.branch} if self.branch else None
        status, body = self._request("GET", self._url(self._contents_path(self.object_name), query), timeout=timeout)
        if status == 404:
            raise NotFoundError("Remote object", f"{self.owner}/{self.repo}/{self.object_name}")
        if status != 200 or not isinstance(body, dict):
            raise TransportError(f"unexpected response {status} fetching {self.object_name}")
        try:
            sha = body["sha"]
            ciphertext = base64.b64decode(body["content"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TransportError(f"malformed contents response for {self.object_name}") from exc
        return RemoteSnapshot(ciphertext=ciphertext, marker=sha)

    def _push(self, ciphertext: bytes, expected_marker: Optional[str], timeout: Optional[float]) -> str:
        payload: Dict[str, Any] = {
            "message": f"{'Update' if expected_marker else 'Create'} {self.object_name}",
            "content": base64.b64encode(ciphertext).decode("ascii"),
        }
        if expected_marker is not None:
            payload["sha"] = expected_marker
        if self.branch:
            payload["branch"] = self.branch
        status, body = self._request(
            "PUT", self._url(self._contents_path(self.object_name)), payload, timeout=timeout,
        )
        if status in (409, 422) or (status == 404 and expected_marker is not None):
            raise ConflictError(f"{self.object_name}: remote rejected marker {expected_marker!r} ({status})")
        if status not in (200, 201) or not isinstance(body, dict):
            raise TransportError(f"unexpected response {status} pushing {self.object_name}")
        try:
            return str(body["content"]["sha"])
        except (KeyError, TypeError) as exc:
            raise TransportError(f"malformed push response for {self.object_name}") from exc

    def _ping(self, timeout: Optional[float]) -> None:
        status, body = self._request("GET", self._url(f"repos/{self.owner}/{self.repo}"), timeout=timeout)
        if status == 404:
            raise ConfigurationError(f"repository {self.owner}/{self.repo} does not exist")
        if status != 200 or not isinstance(body, dict):
            raise TransportError(f"unexpected response {status} for repository {self.owner}/{self.repo}")
        if body.get("private") is not True:
            raise ConfigurationError(f"repository {self.owner}/{self.repo} must be private")
        status, _ = self._request("GET", self._url(self._contents_path(REPO_MARKER)), timeout=timeout)
        if status == 404:
            raise ConfigurationError(f"{self.owner}/{self.repo} is not a strongbox repository (missing {REPO_MARKER})")

    def fetch(self, timeout: Optional[float] = None) -> RemoteSnapshot:
        return call_with_timeout(lambda: self._fetch(timeout), timeout, f"fetch {self.provider_id}")

    def push(self, ciphertext: bytes, expected_marker: Optional[str], timeout: Optional[float] = None) -> str:
        return call_with_timeout(
            lambda: self._push(ciphertext, expected_marker, timeout), timeout, f"push {self.provider_id}",
        )

    def ping(self, timeout: Optional[float] = None) -> None:
        call_with_timeout(lambda: self._ping(timeout), timeout, f"ping {self.provider_id}")
