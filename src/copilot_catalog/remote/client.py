"""
HTTP client for the content repository's REST API.

Implements the read-only calls the catalog needs:
- Branch info -> root tree SHA (conditional, with If-None-Match)
- Recursive tree listing by SHA
- Raw file content by URL
- Commit history by path (best-effort last-modified date)
- Quota status (/rate_limit)

Every call except the quota query goes through the RateGate first.
If the remote still answers "quota exceeded", the client sleeps until
the reset time plus a safety margin and retries the same call exactly
once (tenacity). It never retries indefinitely.
"""

import os
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import httpx
import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
)

from ..config.schema import RateLimitConfig, RemoteConfig
from ..core.events import EventBus
from ..logging.human import HumanLog
from .errors import MalformedRemoteResponse, QuotaExhausted, RemoteUnavailable
from .rate_gate import RateBudget, RateGate

logger = structlog.get_logger()

_ACCEPT = "application/vnd.github.v3+json"

# Fallback wait when a 429 carries neither a reset time nor Retry-After
_DEFAULT_RETRY_AFTER = 60.0


class EntryKind(Enum):
    """Kind of a tree listing entry."""

    FILE = "file"
    DIR = "dir"


@dataclass(frozen=True)
class RemoteTreeEntry:
    """Raw entry of the recursive tree listing."""

    path: str
    kind: EntryKind
    revision: str


@dataclass
class TreeListing:
    """Result of a tree fetch.

    Attributes:
        entries: Entries in listing order.
        truncated: True if the remote cut the recursive listing short.
        validators: Tokens to send on the next conditional fetch.
        not_modified: True if the branch did not change since `validators`.
    """

    entries: list[RemoteTreeEntry] = field(default_factory=list)
    truncated: bool = False
    validators: dict[str, str] = field(default_factory=dict)
    not_modified: bool = False


class RemoteClient:
    """Rate-aware client for the remote repository API.

    Flow of a tree fetch:
    1. GET /repos/{repo}/branches/{branch} -> tree SHA (304 if unchanged)
    2. GET /repos/{repo}/git/trees/{sha}?recursive=1 -> entries
    """

    def __init__(
        self,
        config: RemoteConfig,
        repo: str,
        branch: str,
        rate_limit: RateLimitConfig | None = None,
        gate: RateGate | None = None,
        events: EventBus | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Remote API configuration
            repo: Repository in 'owner/name' form
            branch: Branch to index
            rate_limit: Quota policy (used when `gate` is not given)
            gate: Pre-built RateGate; by default one is built on query_quota
            events: Bus for quota notifications
            sleep: Sleep function; interruptible in production
            clock: Returns the current epoch time in seconds
            transport: Optional httpx transport (tests)
        """
        self.config = config
        self.repo = repo
        self.branch = branch
        self.rate_limit = rate_limit or RateLimitConfig()
        self._sleep = sleep
        self._clock = clock
        self.log = logger.bind(component="remote_client", repo=repo, branch=branch)
        self.hlog = HumanLog(self.log)
        self.gate = gate or RateGate(
            self.rate_limit, self.query_quota, clock=clock, events=events
        )

        headers = {
            "User-Agent": config.user_agent,
            "Accept": _ACCEPT,
        }
        token = self._resolve_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.http = httpx.Client(
            headers=headers,
            timeout=config.timeout,
            follow_redirects=True,
            transport=transport,
        )

        self.log.info(
            "remote.client.initialized",
            api_base=config.api_base,
            has_token=token is not None,
        )

    @property
    def source(self) -> str:
        return f"{self.repo}@{self.branch}"

    def _resolve_token(self) -> str | None:
        """Resolve the API token.

        Precedence:
        1. token set directly in config
        2. token from the environment variable named by token_env
        """
        if self.config.token:
            return self.config.token
        if self.config.token_env:
            return os.environ.get(self.config.token_env) or None
        return None

    def _api(self, path: str) -> str:
        return f"{self.config.api_base.rstrip('/')}/{path.lstrip('/')}"

    # --- Public operations ---

    def fetch_tree(self, validators: dict[str, str] | None = None) -> TreeListing:
        """Fetch the recursive tree of the configured branch.

        Args:
            validators: Tokens from a previous fetch. When the branch ETag
                still matches, no tree listing call is made.

        Raises:
            RemoteUnavailable: On network errors or non-2xx responses
            MalformedRemoteResponse: If a payload has an unexpected shape
        """
        validators = validators or {}
        headers: dict[str, str] = {}
        if validators.get("branch"):
            headers["If-None-Match"] = validators["branch"]

        branch_resp = self._get(
            self._api(f"/repos/{self.repo}/branches/{self.branch}"),
            headers=headers,
            allow_not_modified=True,
        )
        if branch_resp.status_code == 304:
            self.log.info("remote.tree.not_modified")
            return TreeListing(validators=dict(validators), not_modified=True)

        data = self._json(branch_resp)
        try:
            tree_sha = data["commit"]["commit"]["tree"]["sha"]
        except (KeyError, TypeError) as e:
            raise MalformedRemoteResponse(
                f"Branch response for '{self.branch}' has no tree SHA"
            ) from e

        new_validators = {"tree": str(tree_sha)}
        etag = branch_resp.headers.get("etag")
        if etag:
            new_validators["branch"] = etag

        tree_resp = self._get(
            self._api(f"/repos/{self.repo}/git/trees/{tree_sha}"),
            params={"recursive": "1"},
        )
        tree_data = self._json(tree_resp)
        entries = self._parse_tree(tree_data)
        truncated = bool(tree_data.get("truncated", False))

        if truncated:
            self.log.warning("remote.tree.truncated", entries=len(entries))
        self.log.info("remote.tree.fetched", entries=len(entries), sha=tree_sha)

        return TreeListing(entries=entries, truncated=truncated, validators=new_validators)

    def fetch_content(self, url: str) -> bytes:
        """Fetch the raw bytes of a file by its resolved content URL."""
        response = self._get(url, delay_ms=self.config.content_delay_ms)
        self.log.debug("remote.content.fetched", url=url, size=len(response.content))
        return response.content

    def fetch_last_revision_date(self, path: str) -> datetime | None:
        """Return the date of the newest commit touching `path`.

        Best-effort: any failure is logged and returns None.
        """
        try:
            response = self._get(
                self._api(f"/repos/{self.repo}/commits"),
                params={"path": path, "per_page": "1"},
            )
            commits = self._json(response)
            if not commits:
                return None
            date = commits[0]["commit"]["author"]["date"]
            return datetime.fromisoformat(str(date).replace("Z", "+00:00"))
        except (RemoteUnavailable, KeyError, IndexError, TypeError, ValueError) as e:
            self.log.warning("remote.revision_date.failed", path=path, error=str(e))
            return None

    def query_quota(self) -> RateBudget:
        """Query the current API quota.

        Not guarded by the RateGate: this call is the gate's source.

        Raises:
            RemoteUnavailable: If the quota endpoint cannot be queried
            MalformedRemoteResponse: If the payload has an unexpected shape
        """
        url = self._api("/rate_limit")
        try:
            response = self.http.get(url)
        except httpx.HTTPError as e:
            raise RemoteUnavailable(f"Cannot reach {url}: {e}") from e

        if not response.is_success:
            raise RemoteUnavailable(
                f"HTTP {response.status_code} from {url}",
                status_code=response.status_code,
            )

        data = self._json(response)
        try:
            core = data["resources"]["core"]
            return RateBudget(
                remaining=int(core["remaining"]),
                limit=int(core["limit"]),
                reset_at=float(core["reset"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedRemoteResponse(f"Unexpected quota payload: {e}") from e

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "RemoteClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # --- Internals ---

    def _get(
        self,
        url: str,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        allow_not_modified: bool = False,
        delay_ms: int | None = None,
    ) -> httpx.Response:
        """GET with quota guard and a single retry on quota exhaustion."""
        for attempt in Retrying(
            retry=retry_if_exception_type(QuotaExhausted),
            stop=stop_after_attempt(2),
            wait=self._wait_for_reset,
            sleep=self._sleep,
            before_sleep=self._on_quota_retry,
            reraise=True,
        ):
            with attempt:
                return self._send(url, params, headers, allow_not_modified, delay_ms)

    def _send(
        self,
        url: str,
        params: dict[str, str] | None,
        headers: dict[str, str] | None,
        allow_not_modified: bool,
        delay_ms: int | None,
    ) -> httpx.Response:
        wait = self.gate.reserve()
        if wait > 0:
            self._sleep(wait)

        try:
            response = self.http.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            self.log.error("remote.request.connection_error", url=url, error=str(e))
            raise RemoteUnavailable(f"Cannot reach {url}: {e}") from e

        self.gate.observe(RateBudget.from_headers(response.headers))
        self.log.debug("remote.request", url=url, status=response.status_code)

        if response.status_code == 304 and allow_not_modified:
            return response

        if self._is_quota_exceeded(response):
            raise QuotaExhausted(
                reset_at=self._reset_time(response),
                status_code=response.status_code,
            )

        if not response.is_success:
            raise RemoteUnavailable(
                f"HTTP {response.status_code} from {url}",
                status_code=response.status_code,
            )

        delay = self.config.request_delay_ms if delay_ms is None else delay_ms
        if delay > 0:
            self._sleep(delay / 1000)

        return response

    @staticmethod
    def _is_quota_exceeded(response: httpx.Response) -> bool:
        if response.status_code == 429:
            return True
        return (
            response.status_code == 403
            and response.headers.get("x-ratelimit-remaining") == "0"
        )

    def _reset_time(self, response: httpx.Response) -> float:
        """Epoch seconds when the remote says the quota resets."""
        reset = response.headers.get("x-ratelimit-reset")
        if reset is not None:
            try:
                return float(reset)
            except ValueError:
                pass
        retry_after = response.headers.get("retry-after")
        if retry_after is not None:
            try:
                return self._clock() + float(retry_after)
            except ValueError:
                pass
        return self._clock() + _DEFAULT_RETRY_AFTER

    def _wait_for_reset(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        reset_at = exc.reset_at if isinstance(exc, QuotaExhausted) else self._clock()
        return max(0.0, reset_at - self._clock()) + self.rate_limit.safety_margin

    def _on_quota_retry(self, retry_state: RetryCallState) -> None:
        """Callback before the single retry. Logs the attempt and wait time."""
        next_wait = retry_state.next_action.sleep if retry_state.next_action else 0
        self.hlog.quota_retry(next_wait)
        self.log.warning(
            "remote.quota_retry",
            attempt=retry_state.attempt_number,
            wait_seconds=round(next_wait, 1),
        )

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise MalformedRemoteResponse(
                f"Response from {response.request.url} is not valid JSON"
            ) from e

    @staticmethod
    def _parse_tree(data: Any) -> list[RemoteTreeEntry]:
        if not isinstance(data, dict) or not isinstance(data.get("tree"), list):
            raise MalformedRemoteResponse("Tree response has no 'tree' list")

        entries: list[RemoteTreeEntry] = []
        for raw in data["tree"]:
            if not isinstance(raw, dict) or "path" not in raw:
                raise MalformedRemoteResponse(f"Tree entry without path: {raw!r}")
            match raw.get("type"):
                case "blob":
                    kind = EntryKind.FILE
                case "tree":
                    kind = EntryKind.DIR
                case _:
                    # Submodules and other object types are not content
                    continue
            entries.append(
                RemoteTreeEntry(
                    path=str(raw["path"]),
                    kind=kind,
                    revision=str(raw.get("sha", "")),
                )
            )
        return entries
