"""Shared fixtures for commlink tests.

Nothing here touches the network: SMTP, Graph and SOAP are replaced by
small fakes that record what they were asked to do.
"""

import json
from datetime import datetime
from email.message import EmailMessage
from typing import Any, Optional

import pytest
import pytz

from commlink.config import GraphConfig, RelayConfig, SmtpConfig
from commlink.relay.log_store import InMemorySendLogStore

FIXED_NOW = pytz.utc.localize(datetime(2025, 3, 14, 9, 30, 0))
FIXED_UID = "11111111-2222-3333-4444-555555555555@commlink"


# ─────────────────────────────────────────────────────────────────────────────
# SMTP
# ─────────────────────────────────────────────────────────────────────────────


class FakeSMTP:
    def __init__(self, host: str, port: int, timeout: Optional[float] = None) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self.started_tls = False
        self.login_args: Optional[tuple[str, str]] = None
        self.sent: list[tuple[EmailMessage, str, list[str]]] = []
        self.quit_called = False
        self.fail_send: Optional[Exception] = None
        self.fail_login: Optional[Exception] = None
        self.closed = False

    def starttls(self, context: Any = None) -> None:
        self.started_tls = True

    def login(self, user: str, password: str) -> None:
        if self.fail_login is not None:
            raise self.fail_login
        self.login_args = (user, password)

    def send_message(self, msg: EmailMessage, from_addr: str, to_addrs: list[str]) -> dict:
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append((msg, from_addr, list(to_addrs)))
        return {}

    def quit(self) -> None:
        self.quit_called = True

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def smtp_sessions() -> list[FakeSMTP]:
    """Every FakeSMTP built by ``smtp_factory``, in creation order."""
    return []


@pytest.fixture
def smtp_factory(smtp_sessions: list[FakeSMTP]):
    def factory(host: str, port: int, timeout: Optional[float] = None) -> FakeSMTP:
        session = FakeSMTP(host, port, timeout)
        smtp_sessions.append(session)
        return session

    return factory


@pytest.fixture
def smtp_config() -> SmtpConfig:
    return SmtpConfig.model_construct(
        host="smtp.example.com",
        port=587,
        use_auth=True,
        username="mailer",
        password="secret",
        security="starttls",
        timeout=10.0,
        from_address="noreply@example.com",
        from_name="School Office",
        test_recipient="tester@example.com",
        test_recipient_name="Tester",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Graph
# ─────────────────────────────────────────────────────────────────────────────


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode()
        self.text = self.content.decode()

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        return json.loads(self.content)


class FakeSession:
    """Replays queued responses and records each request."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeAuthProvider:
    def __init__(self, tokens: Optional[list[str]] = None) -> None:
        self.tokens = tokens or ["token-1", "token-2", "token-3"]
        self.acquired = 0
        self.cleared = 0

    def acquire_token(self) -> str:
        token = self.tokens[self.acquired]
        self.acquired += 1
        return token

    def clear_cache(self) -> None:
        self.cleared += 1


@pytest.fixture
def graph_config() -> GraphConfig:
    return GraphConfig.model_construct(
        tenant_id="tenant",
        client_id="client",
        client_secret="shh",
        authority=None,
        timeout=5.0,
    )


@pytest.fixture
def graph_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def auth_provider() -> FakeAuthProvider:
    return FakeAuthProvider()


# ─────────────────────────────────────────────────────────────────────────────
# SOAP relay
# ─────────────────────────────────────────────────────────────────────────────


ERROR_CODES = {"12": "Unknown recipient", "25": "Co-account does not exist"}


class FakeRelayService:
    def __init__(self, status: Any = 0, error_codes: Optional[dict] = None) -> None:
        self.status = status
        self.error_codes = ERROR_CODES if error_codes is None else error_codes
        self.sent: list[tuple] = []
        self.lookups = 0

    def sendMsg(self, *args: Any) -> Any:  # noqa: N802 - SOAP operation name
        self.sent.append(args)
        if isinstance(self.status, Exception):
            raise self.status
        return self.status

    def returnJsonErrorCodes(self) -> str:  # noqa: N802 - SOAP operation name
        self.lookups += 1
        return json.dumps(self.error_codes)


class FakeSoapClient:
    def __init__(self, platform: str, service: FakeRelayService) -> None:
        self.platform = platform
        self.service = service


class SoapFactory:
    """Builds FakeSoapClients, one FakeRelayService per platform."""

    def __init__(self) -> None:
        self.services: dict[str, FakeRelayService] = {}
        self.connected: list[str] = []

    def __call__(self, platform: str, timeout: float) -> FakeSoapClient:
        self.connected.append(platform)
        service = self.services.setdefault(platform, FakeRelayService())
        return FakeSoapClient(platform, service)


@pytest.fixture
def soap_factory() -> SoapFactory:
    return SoapFactory()


@pytest.fixture
def send_log() -> InMemorySendLogStore:
    return InMemorySendLogStore()


@pytest.fixture
def relay_config(tmp_path) -> RelayConfig:
    return RelayConfig.model_construct(
        platform="school.example.be",
        webservices_password="ws-secret",
        timeout=5.0,
        log_file=None,
        test_platform="test.example.be",
        test_password="test-secret",
        test_username="tester",
        test_account=3,
    )
