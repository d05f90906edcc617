"""Shared test configuration and fixtures for the ShipLog test suite."""

import json
import re
import sys
from pathlib import Path

import httpx
import pytest

# Add backend to Python path so imports work
backend_dir = str(Path(__file__).parent.parent / "backend")
if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

from shiplog.core.config import EmailConfig  # noqa: E402
from shiplog.db.session import create_all, create_engine, create_session_factory  # noqa: E402
from shiplog.db.store import ReleaseStore  # noqa: E402
from shiplog.db.tables import ChannelRecord, RepoRecord, UserRecord  # noqa: E402
from shiplog.distribution.distributor import Distributor  # noqa: E402
from shiplog.generation.generator import Completion, NoteGenerator  # noqa: E402
from shiplog.github.aggregator import DiffAggregator  # noqa: E402
from shiplog.pipeline.orchestrator import ReleaseOrchestrator  # noqa: E402
from shiplog.security.credentials import CredentialCipher  # noqa: E402
from shiplog.security.signature import sign  # noqa: E402

WEBHOOK_SECRET = "whsec-test"
SECRET_KEY = "shiplog-test-key"
GITHUB_TOKEN = "gho_testtoken"


def _commit(sha: str, message: str, login: str | None = "octocat") -> dict:
    return {
        "sha": sha,
        "commit": {"message": message, "author": {"name": "Octo Cat"}},
        "author": {"login": login} if login else None,
    }


def _pull(number: int, title: str) -> dict:
    return {
        "number": number,
        "title": title,
        "body": f"Body of #{number}",
        "labels": [{"name": "enhancement"}],
        "user": {"login": "octocat"},
    }


class FakeGitHub:
    """
    In-memory stand-in for every HTTP collaborator: the GitHub REST API,
    OAuth token exchange, chat webhooks and Resend.
    """

    OK_HOOK = "https://hooks.example.com/ok"
    FAIL_HOOK = "https://hooks.example.com/fail"

    def __init__(self):
        self.releases: list[dict] = []  # newest first
        self.ranges: dict[str, list[dict]] = {}
        self.pulls: dict[int, dict] = {}
        self.missing_tags: set[str] = set()
        self.broken_tags: dict[str, str | dict] = {}  # tag -> 200 body that is not a valid release
        self.failing_pulls: set[int] = set()
        self.compare_status = 200
        self.hook_status = {self.OK_HOOK: 200, self.FAIL_HOOK: 500}
        self.requests: list[httpx.Request] = []

    def add_release(self, tag: str, body: str | None = None) -> dict:
        release = {
            "id": 1000 + len(self.releases),
            "tag_name": tag,
            "name": f"Release {tag}",
            "body": body,
            "html_url": f"https://github.com/acme/widgets/releases/tag/{tag}",
            "draft": False,
            "prerelease": False,
            "published_at": "2024-05-01T12:00:00Z",
        }
        self.releases.append(release)
        return release

    def add_range(self, base: str, head: str, commits: list[dict]) -> None:
        self.ranges[f"{base}...{head}"] = commits

    def sent_to(self, host: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == host]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host, path = request.url.host, request.url.path

        if host == "hooks.example.com":
            status = self.hook_status.get(str(request.url), 404)
            return httpx.Response(status, text="ok" if status < 400 else "internal error")
        if host == "api.resend.com":
            return httpx.Response(200, json={"id": "email_123"})
        if host == "github.com" and path == "/login/oauth/access_token":
            return httpx.Response(200, json={"access_token": GITHUB_TOKEN, "token_type": "bearer"})
        if host != "api.github.com":
            return httpx.Response(404)

        if path == "/user":
            return httpx.Response(200, json={"login": "octocat", "id": 583231})

        match = re.fullmatch(r"/repos/[^/]+/[^/]+/releases/tags/(.+)", path)
        if match:
            tag = match.group(1)
            if tag in self.broken_tags:
                broken = self.broken_tags[tag]
                if isinstance(broken, dict):
                    return httpx.Response(200, json=broken)
                return httpx.Response(200, text=broken)
            for release in self.releases:
                if release["tag_name"] == tag and tag not in self.missing_tags:
                    return httpx.Response(200, json=release)
            return httpx.Response(404, json={"message": "Not Found"})

        if re.fullmatch(r"/repos/[^/]+/[^/]+/releases", path):
            per_page = int(request.url.params.get("per_page", "30"))
            return httpx.Response(200, json=self.releases[:per_page])

        match = re.fullmatch(r"/repos/[^/]+/[^/]+/compare/(.+)", path)
        if match:
            if self.compare_status != 200:
                return httpx.Response(self.compare_status, json={"message": "boom"})
            return httpx.Response(200, json={"commits": self.ranges.get(match.group(1), [])})

        match = re.fullmatch(r"/repos/[^/]+/[^/]+/pulls/(\d+)", path)
        if match:
            number = int(match.group(1))
            if number in self.failing_pulls or number not in self.pulls:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=self.pulls[number])

        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class FakeProvider:
    """TextProvider double. Writes one short Markdown document per call."""

    def __init__(self, tokens: int = 10):
        self.tokens = tokens
        self.calls: list[list] = []
        self.fail_tags: set[str] = set()
        self.empty = False
        self.version = 1

    @staticmethod
    def audience_of(messages) -> str:
        system = messages[0].content
        if "customer-facing" in system:
            return "customer"
        if "developer-facing" in system:
            return "developer"
        return "stakeholder"

    async def complete(self, messages, model, temperature):
        self.calls.append(messages)
        user = messages[-1].content
        for tag in self.fail_tags:
            if f"for tag {tag}" in user:
                raise RuntimeError("model overloaded")
        if self.empty:
            return Completion(text="   ", tokens=self.tokens, model=model)
        audience = self.audience_of(messages)
        return Completion(
            text=f"## {audience} notes v{self.version}\n\n- Widget export",
            tokens=self.tokens,
            model=model,
        )


@pytest.fixture(scope="session")
def project_root():
    return Path(__file__).parent.parent


@pytest.fixture
def github():
    """acme/widgets with v1.0.0 → v1.1.0 → v1.2.0; v1.2.0 references PR #42."""
    fake = FakeGitHub()
    fake.add_release("v1.2.0", body="Planned: export, import")
    fake.add_release("v1.1.0")
    fake.add_release("v1.0.0")
    fake.add_range("v1.1.0", "v1.2.0", [
        _commit("a1", "Add widget export (#42)"),
        _commit("a2", "Fix typo in README", login=None),
        _commit("a3", "Bump dependencies"),
    ])
    fake.add_range("v1.0.0", "v1.1.0", [_commit("b1", "Initial widgets")])
    fake.pulls[42] = _pull(42, "Add widget export")
    return fake


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def cipher():
    return CredentialCipher(SECRET_KEY)


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'shiplog.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessions(engine):
    return create_session_factory(engine)


@pytest.fixture
def store(sessions):
    return ReleaseStore(sessions)


@pytest.fixture
async def repo(sessions, store, cipher) -> RepoRecord:
    """Connected acme/widgets: one Slack channel that works, one webhook that answers 500."""
    async with sessions() as session, session.begin():
        user = UserRecord(login="octocat", access_token=cipher.encrypt(GITHUB_TOKEN))
        session.add(user)
        await session.flush()
        record = RepoRecord(user_id=user.id, owner="acme", name="widgets", full_name="acme/widgets")
        session.add(record)
        await session.flush()
        session.add_all([
            ChannelRecord(
                repo_id=record.id, provider="slack", webhook_url=FakeGitHub.OK_HOOK,
                audience="CUSTOMER", name="#releases",
            ),
            ChannelRecord(
                repo_id=record.id, provider="webhook", webhook_url=FakeGitHub.FAIL_HOOK,
                audience="DEVELOPER", name="ci",
            ),
        ])
        repo_id = record.id
    return await store.get_repo(repo_id)


@pytest.fixture
def email_config():
    return EmailConfig(api_key="re_test", base_url="https://api.resend.com", sender="ShipLog <releases@shiplog.io>")


@pytest.fixture
def orchestrator(store, cipher, github, provider, email_config):
    transport = github.transport()
    return ReleaseOrchestrator(
        store=store,
        cipher=cipher,
        aggregator=DiffAggregator(transport=transport),
        generator=NoteGenerator(provider, model="gemini-test"),
        distributor=Distributor(http_timeout=5.0, email_config=email_config, transport=transport),
        webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def release_webhook():
    """Build a signed ``release`` delivery: returns (body, signature)."""

    def build(full_name="acme/widgets", tag="v1.2.0", action="published", secret=WEBHOOK_SECRET):
        body = json.dumps({
            "action": action,
            "release": {"tag_name": tag, "name": tag},
            "repository": {"full_name": full_name},
        }).encode()
        return body, sign(body, secret)

    return build
