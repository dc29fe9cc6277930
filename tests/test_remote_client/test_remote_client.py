"""
Tests for RemoteClient.

Covers:
- Tree fetch: branch -> tree SHA -> recursive listing
- Conditional fetch (If-None-Match / 304)
- Truncated listings and malformed payloads
- Quota exhaustion: wait until reset, retry exactly once
- Content, revision date and quota queries
- Request headers and inter-call delays

All HTTP goes through httpx.MockTransport; sleeps are recorded, never real.
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import httpx
import pytest

from copilot_catalog.config.schema import RateLimitConfig, RemoteConfig
from copilot_catalog.remote import (
    EntryKind,
    MalformedRemoteResponse,
    QuotaExhausted,
    RateBudget,
    RemoteClient,
    RemoteUnavailable,
)

NOW = 1_700_000_000.0
API = "https://api.github.com"
BRANCH_PATH = "/repos/github/awesome-copilot/branches/main"
TREE_PATH = "/repos/github/awesome-copilot/git/trees/abc123"


def branch_payload(sha: str = "abc123") -> dict:
    return {"name": "main", "commit": {"sha": "c0ffee", "commit": {"tree": {"sha": sha}}}}


def tree_payload(truncated: bool = False) -> dict:
    return {
        "sha": "abc123",
        "truncated": truncated,
        "tree": [
            {"path": "instructions", "type": "tree", "sha": "d1"},
            {"path": "instructions/foo.instructions.md", "type": "blob", "sha": "f1"},
            {"path": "vendor/lib", "type": "commit", "sha": "s1"},
            {"path": "README.md", "type": "blob", "sha": "r1"},
        ],
    }


class Recorder:
    """Routes requests by path and remembers them."""

    def __init__(self, routes: dict):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if callable(route):
            return route(request)
        return route

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def remote_config() -> RemoteConfig:
    return RemoteConfig(token="t0ken", request_delay_ms=0, content_delay_ms=0)


@pytest.fixture
def gate() -> MagicMock:
    gate = MagicMock()
    gate.reserve.return_value = 0.0
    return gate


@pytest.fixture
def sleeps() -> list[float]:
    return []


def make_client(config, routes, gate=None, sleeps=None, rate_limit=None):
    recorder = Recorder(routes)
    sleep_log = sleeps if sleeps is not None else []
    client = RemoteClient(
        config,
        repo="github/awesome-copilot",
        branch="main",
        rate_limit=rate_limit,
        gate=gate,
        sleep=sleep_log.append,
        clock=lambda: NOW,
        transport=httpx.MockTransport(recorder),
    )
    return client, recorder


# ── Tests: fetch_tree ───────────────────────────────────────────────────────


class TestFetchTree:
    def test_lists_files_and_dirs(self, remote_config, gate):
        client, recorder = make_client(remote_config, {
            BRANCH_PATH: httpx.Response(200, json=branch_payload(), headers={"etag": '"e1"'}),
            TREE_PATH: httpx.Response(200, json=tree_payload()),
        }, gate=gate)

        listing = client.fetch_tree()

        assert [e.path for e in listing.entries] == [
            "instructions",
            "instructions/foo.instructions.md",
            "README.md",
        ]
        assert listing.entries[0].kind is EntryKind.DIR
        assert listing.entries[1].kind is EntryKind.FILE
        assert listing.entries[1].revision == "f1"
        assert listing.truncated is False
        assert listing.not_modified is False
        assert listing.validators == {"tree": "abc123", "branch": '"e1"'}
        assert recorder.paths() == [BRANCH_PATH, TREE_PATH]
        assert recorder.requests[1].url.params["recursive"] == "1"

    def test_truncated_flag(self, remote_config, gate):
        client, _ = make_client(remote_config, {
            BRANCH_PATH: httpx.Response(200, json=branch_payload()),
            TREE_PATH: httpx.Response(200, json=tree_payload(truncated=True)),
        }, gate=gate)
        listing = client.fetch_tree()
        assert listing.truncated is True
        assert len(listing.entries) == 3

    def test_not_modified_skips_tree_call(self, remote_config, gate):
        def branch(request: httpx.Request) -> httpx.Response:
            assert request.headers["if-none-match"] == '"e1"'
            return httpx.Response(304)

        client, recorder = make_client(remote_config, {BRANCH_PATH: branch}, gate=gate)
        validators = {"tree": "abc123", "branch": '"e1"'}

        listing = client.fetch_tree(validators)

        assert listing.not_modified is True
        assert listing.entries == []
        assert listing.validators == validators
        assert recorder.paths() == [BRANCH_PATH]

    def test_no_validators_no_conditional_header(self, remote_config, gate):
        client, recorder = make_client(remote_config, {
            BRANCH_PATH: httpx.Response(200, json=branch_payload()),
            TREE_PATH: httpx.Response(200, json=tree_payload()),
        }, gate=gate)
        client.fetch_tree()
        assert "if-none-match" not in recorder.requests[0].headers

    def test_branch_without_tree_sha_is_malformed(self, remote_config, gate):
        client, _ = make_client(remote_config, {
            BRANCH_PATH: httpx.Response(200, json={"name": "main"}),
        }, gate=gate)
        with pytest.raises(MalformedRemoteResponse):
            client.fetch_tree()

    def test_invalid_json_is_malformed(self, remote_config, gate):
        client, _ = make_client(remote_config, {
            BRANCH_PATH: httpx.Response(200, content=b"<html>"),
        }, gate=gate)
        with pytest.raises(MalformedRemoteResponse):
            client.fetch_tree()

    def test_tree_entry_without_path_is_malformed(self, remote_config, gate):
        client, _ = make_client(remote_config, {
            BRANCH_PATH: httpx.Response(200, json=branch_payload()),
            TREE_PATH: httpx.Response(200, json={"tree": [{"type": "blob"}]}),
        }, gate=gate)
        with pytest.raises(MalformedRemoteResponse):
            client.fetch_tree()

    def test_server_error_is_unavailable(self, remote_config, gate):
        client, _ = make_client(remote_config, {
            BRANCH_PATH: httpx.Response(502),
        }, gate=gate)
        with pytest.raises(RemoteUnavailable) as exc_info:
            client.fetch_tree()
        assert exc_info.value.status_code == 502

    def test_connection_error_is_unavailable(self, remote_config, gate):
        def boom(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client, _ = make_client(remote_config, {BRANCH_PATH: boom}, gate=gate)
        with pytest.raises(RemoteUnavailable):
            client.fetch_tree()


# ── Tests: quota handling ───────────────────────────────────────────────────


class TestQuotaRetry:
    def quota_response(self) -> httpx.Response:
        return httpx.Response(
            403,
            json={"message": "API rate limit exceeded"},
            headers={
                "x-ratelimit-remaining": "0",
                "x-ratelimit-limit": "60",
                "x-ratelimit-reset": str(int(NOW + 10)),
            },
        )

    def test_waits_for_reset_and_retries_once(self, remote_config, gate, sleeps):
        responses = iter([self.quota_response(), httpx.Response(200, json=branch_payload())])
        client, recorder = make_client(remote_config, {
            BRANCH_PATH: lambda request: next(responses),
            TREE_PATH: httpx.Response(200, json=tree_payload()),
        }, gate=gate, sleeps=sleeps)

        listing = client.fetch_tree()

        assert len(listing.entries) == 3
        assert recorder.paths() == [BRANCH_PATH, BRANCH_PATH, TREE_PATH]
        assert sleeps == [pytest.approx(10 + RateLimitConfig().safety_margin)]

    def test_second_exhaustion_raises(self, remote_config, gate, sleeps):
        client, recorder = make_client(remote_config, {
            BRANCH_PATH: lambda request: self.quota_response(),
        }, gate=gate, sleeps=sleeps)

        with pytest.raises(QuotaExhausted) as exc_info:
            client.fetch_tree()

        assert exc_info.value.reset_at == NOW + 10
        assert recorder.paths() == [BRANCH_PATH, BRANCH_PATH]
        assert len(sleeps) == 1

    def test_429_with_retry_after(self, remote_config, gate, sleeps):
        responses = iter([
            httpx.Response(429, headers={"retry-after": "3"}),
            httpx.Response(200, json=branch_payload()),
        ])
        client, _ = make_client(remote_config, {
            BRANCH_PATH: lambda request: next(responses),
            TREE_PATH: httpx.Response(200, json=tree_payload()),
        }, gate=gate, sleeps=sleeps)

        client.fetch_tree()

        assert sleeps == [pytest.approx(3 + RateLimitConfig().safety_margin)]

    def test_plain_403_is_not_quota(self, remote_config, gate, sleeps):
        client, recorder = make_client(remote_config, {
            BRANCH_PATH: httpx.Response(403, headers={"x-ratelimit-remaining": "12"}),
        }, gate=gate, sleeps=sleeps)

        with pytest.raises(RemoteUnavailable) as exc_info:
            client.fetch_tree()

        assert not isinstance(exc_info.value, QuotaExhausted)
        assert len(recorder.requests) == 1
        assert sleeps == []

    def test_gate_wait_is_slept_before_call(self, remote_config, gate, sleeps):
        gate.reserve.return_value = 2.5
        client, _ = make_client(remote_config, {
            BRANCH_PATH: httpx.Response(200, json=branch_payload()),
            TREE_PATH: httpx.Response(200, json=tree_payload()),
        }, gate=gate, sleeps=sleeps)

        client.fetch_tree()

        assert sleeps == [2.5, 2.5]
        assert gate.reserve.call_count == 2

    def test_response_headers_feed_the_gate(self, remote_config, gate):
        client, _ = make_client(remote_config, {
            BRANCH_PATH: httpx.Response(200, json=branch_payload(), headers={
                "x-ratelimit-remaining": "41",
                "x-ratelimit-limit": "60",
                "x-ratelimit-reset": str(int(NOW + 100)),
            }),
            TREE_PATH: httpx.Response(200, json=tree_payload()),
        }, gate=gate)

        client.fetch_tree()

        observed = gate.observe.call_args_list[0].args[0]
        assert observed == RateBudget(remaining=41, limit=60, reset_at=NOW + 100)


# ── Tests: default gate ─────────────────────────────────────────────────────


class TestDefaultGate:
    def test_low_quota_spreads_calls(self, remote_config, sleeps):
        rate_limit = RateLimitConfig(low_water_delay=1.0)
        quota = {"resources": {"core": {"remaining": 2, "limit": 60, "reset": NOW + 600}}}
        client, recorder = make_client(remote_config, {
            "/rate_limit": lambda request: httpx.Response(200, json=quota),
            BRANCH_PATH: httpx.Response(200, json=branch_payload()),
            TREE_PATH: httpx.Response(200, json=tree_payload()),
        }, sleeps=sleeps, rate_limit=rate_limit)

        client.fetch_tree()

        assert recorder.paths() == ["/rate_limit", BRANCH_PATH, "/rate_limit", TREE_PATH]
        assert sleeps == [1.0, 1.0]

    def test_quota_query_failure_fails_open(self, remote_config, sleeps):
        client, _ = make_client(remote_config, {
            "/rate_limit": lambda request: httpx.Response(500),
            BRANCH_PATH: httpx.Response(200, json=branch_payload()),
            TREE_PATH: httpx.Response(200, json=tree_payload()),
        }, sleeps=sleeps)

        listing = client.fetch_tree()

        assert len(listing.entries) == 3
        assert sleeps == [0.5, 0.5]


# ── Tests: other calls ──────────────────────────────────────────────────────


class TestOtherCalls:
    def test_fetch_content(self, remote_config, gate):
        url = "https://raw.githubusercontent.com/github/awesome-copilot/main/prompts/a.prompt.md"
        client, _ = make_client(remote_config, {
            "/github/awesome-copilot/main/prompts/a.prompt.md": httpx.Response(200, content=b"# A"),
        }, gate=gate)
        assert client.fetch_content(url) == b"# A"

    def test_fetch_content_missing(self, remote_config, gate):
        client, _ = make_client(remote_config, {}, gate=gate)
        with pytest.raises(RemoteUnavailable):
            client.fetch_content("https://raw.githubusercontent.com/x/y/main/missing.md")

    def test_last_revision_date(self, remote_config, gate):
        def commits(request: httpx.Request) -> httpx.Response:
            assert request.url.params["path"] == "prompts/a.prompt.md"
            assert request.url.params["per_page"] == "1"
            return httpx.Response(200, json=[
                {"commit": {"author": {"date": "2024-05-01T12:00:00Z"}}},
            ])

        client, _ = make_client(remote_config, {
            "/repos/github/awesome-copilot/commits": commits,
        }, gate=gate)

        date = client.fetch_last_revision_date("prompts/a.prompt.md")

        assert date == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def test_last_revision_date_is_best_effort(self, remote_config, gate):
        client, _ = make_client(remote_config, {
            "/repos/github/awesome-copilot/commits": httpx.Response(500),
        }, gate=gate)
        assert client.fetch_last_revision_date("prompts/a.prompt.md") is None

    def test_last_revision_date_no_commits(self, remote_config, gate):
        client, _ = make_client(remote_config, {
            "/repos/github/awesome-copilot/commits": httpx.Response(200, json=[]),
        }, gate=gate)
        assert client.fetch_last_revision_date("prompts/a.prompt.md") is None

    def test_query_quota(self, remote_config, gate):
        quota = {"resources": {"core": {"remaining": 59, "limit": 60, "reset": NOW + 3600}}}
        client, _ = make_client(remote_config, {
            "/rate_limit": lambda request: httpx.Response(200, json=quota),
        }, gate=gate)

        budget = client.query_quota()

        assert budget == RateBudget(remaining=59, limit=60, reset_at=NOW + 3600)
        gate.reserve.assert_not_called()

    def test_query_quota_malformed(self, remote_config, gate):
        client, _ = make_client(remote_config, {
            "/rate_limit": httpx.Response(200, content=json.dumps({"rate": {}}).encode()),
        }, gate=gate)
        with pytest.raises(MalformedRemoteResponse):
            client.query_quota()


# ── Tests: headers and pacing ───────────────────────────────────────────────


class TestHeadersAndPacing:
    def test_request_headers(self, remote_config, gate):
        client, recorder = make_client(remote_config, {
            BRANCH_PATH: httpx.Response(200, json=branch_payload()),
            TREE_PATH: httpx.Response(200, json=tree_payload()),
        }, gate=gate)
        client.fetch_tree()

        headers = recorder.requests[0].headers
        assert headers["user-agent"] == "copilot-catalog"
        assert headers["accept"] == "application/vnd.github.v3+json"
        assert headers["authorization"] == "Bearer t0ken"

    def test_token_from_environment(self, gate, monkeypatch):
        monkeypatch.setenv("CATALOG_TEST_TOKEN", "from-env")
        config = RemoteConfig(token_env="CATALOG_TEST_TOKEN", request_delay_ms=0)
        client, recorder = make_client(config, {
            "/rate_limit": httpx.Response(200, json={
                "resources": {"core": {"remaining": 1, "limit": 1, "reset": NOW}},
            }),
        }, gate=gate)
        client.query_quota()
        assert recorder.requests[0].headers["authorization"] == "Bearer from-env"

    def test_no_token_no_authorization(self, gate, monkeypatch):
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        client, recorder = make_client(RemoteConfig(), {
            "/rate_limit": httpx.Response(200, json={
                "resources": {"core": {"remaining": 1, "limit": 1, "reset": NOW}},
            }),
        }, gate=gate)
        client.query_quota()
        assert "authorization" not in recorder.requests[0].headers

    def test_inter_call_delays(self, gate, sleeps):
        config = RemoteConfig(request_delay_ms=200, content_delay_ms=100)
        client, _ = make_client(config, {
            BRANCH_PATH: httpx.Response(200, json=branch_payload()),
            TREE_PATH: httpx.Response(200, json=tree_payload()),
            "/o/r/main/a.md": httpx.Response(200, content=b"x"),
        }, gate=gate, sleeps=sleeps)

        client.fetch_tree()
        client.fetch_content("https://raw.githubusercontent.com/o/r/main/a.md")

        assert sleeps == [0.2, 0.2, 0.1]

    def test_source(self, remote_config, gate):
        client, _ = make_client(remote_config, {}, gate=gate)
        assert client.source == "github/awesome-copilot@main"
