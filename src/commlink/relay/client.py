"""SOAP relay that posts messages into the school platform's inbox."""

import json
import logging
from typing import Any, Callable, Optional

import requests
import zeep
import zeep.exceptions
from zeep.transports import Transport

from ..config import RelayConfig
from ..models.relay import SUCCESS_MESSAGE, SendLogRecord, SendResult, TestUser
from ..utils.exceptions import ConfigurationError, RemoteError, TransportError
from ..utils.translations import NULL_TRANSLATOR, Translator
from .log_store import InMemorySendLogStore, JsonLinesSendLogStore, SendLogStore

logger = logging.getLogger(__name__)

WSDL_TEMPLATE = "https://{platform}/Webservices/V3?wsdl"
USER_AGENT = "commlink-soap-client"
TEST_SUBJECT_PREFIX = "Test: "
USER_FAILURE_NOTICE = (
    "An error occurred while sending the message. However, the action was still completed."
)
INCOMPLETE_TEST_USER = (
    "Test user information is incomplete. Please configure it using set_test_user()."
)

# (result, user-facing notice, redirect target)
FailureHandler = Callable[[SendResult, str, Optional[str]], None]
ClientFactory = Callable[[str, float], Any]


def connect_soap(platform: str, timeout: float) -> zeep.Client:
    """Load the platform WSDL and return a zeep client for it."""
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    transport = Transport(session=session, timeout=timeout, operation_timeout=timeout)
    return zeep.Client(WSDL_TEMPLATE.format(platform=platform), transport=transport)


class MessageRelayClient:
    """
    Relay messages through the platform's V3 web services.

    Every attempt is written to the send log. Delivery failures are absorbed
    by default: ``send_mail`` returns a failed SendResult and hands it to the
    ``on_failure`` callback (where a web app would flash the notice and
    redirect) instead of raising. Pass ``raise_on_failure=True`` to get the
    RemoteError/TransportError after logging.
    """

    def __init__(
        self,
        platform: str,
        webservices_password: Optional[str] = None,
        *,
        log_store: Optional[SendLogStore] = None,
        test_user: Optional[TestUser] = None,
        on_failure: Optional[FailureHandler] = None,
        translator: Translator = NULL_TRANSLATOR,
        timeout: float = 30.0,
        client_factory: Optional[ClientFactory] = None,
        raise_on_failure: bool = False,
    ):
        """
        Connect to the platform.

        Args:
            platform: Platform host name, e.g. ``school.example.be``
            webservices_password: Web services credential sent with each call
            log_store: Sink for send-log records (in memory when omitted)
            test_user: Debug-mode redirection target
            on_failure: Called with every failed SendResult
            translator: Message catalog for user-facing texts
            timeout: Seconds for WSDL loading and each operation
            client_factory: Builds the SOAP client as ``factory(platform, timeout)``
            raise_on_failure: Re-raise delivery errors after logging

        Raises:
            TransportError: If the service description cannot be loaded
        """
        self.platform = platform
        self.webservices_password = webservices_password or ""
        self.log_store = log_store if log_store is not None else InMemorySendLogStore()
        self.on_failure = on_failure
        self.timeout = timeout
        self.raise_on_failure = raise_on_failure
        self._ = translator
        self._test_user = test_user or TestUser()
        self._client_factory = client_factory or connect_soap

        try:
            self._client = self._client_factory(platform, timeout)
        except Exception as e:
            logger.error(f"SOAP connection to {platform} failed: {e}")
            raise TransportError(f"SOAP client error for {platform}: {e}") from e

    @classmethod
    def from_config(cls, config: RelayConfig, **kwargs: Any) -> "MessageRelayClient":
        if not config.platform:
            raise ConfigurationError("RELAY_PLATFORM is not configured")

        kwargs.setdefault(
            "test_user",
            TestUser(
                platform=config.test_platform or "",
                webservicespwd=config.test_password or "",
                username=config.test_username or "",
                nr_co_account=config.test_account or 0,
            ),
        )
        if config.log_file and "log_store" not in kwargs:
            kwargs["log_store"] = JsonLinesSendLogStore(config.log_file)
        kwargs.setdefault("timeout", config.timeout)
        return cls(config.platform, config.webservices_password, **kwargs)

    @property
    def client(self) -> Any:
        """The underlying SOAP client."""
        return self._client

    @property
    def test_user(self) -> TestUser:
        return self._test_user

    def set_test_user(self, **fields: Any) -> None:
        """Update test user fields, keeping the ones not given."""
        self._test_user = self._test_user.merged(**fields)

    def send_mail(
        self,
        recipient: str,
        subject: str,
        body: str,
        account_id: int,
        attachments: Optional[Any] = None,
        error_redirect: Optional[str] = "/",
        debug: bool = False,
    ) -> SendResult:
        """
        Relay a message to ``recipient`` from co-account ``account_id``.

        In debug mode the message goes to the configured test user on the
        test platform instead, with its subject prefixed by ``"Test: "``.

        Args:
            recipient: Platform user name of the recipient
            subject: Message subject
            body: Message body (HTML allowed)
            account_id: Co-account number the message is sent from
            attachments: Attachment payload as the service expects it
            error_redirect: Location passed to ``on_failure``
            debug: Redirect to the test user

        Returns:
            SendResult describing the outcome

        Raises:
            ConfigurationError: In debug mode, if the test user is incomplete
        """
        if debug:
            return self._send_test_mail(subject, body, attachments, error_redirect)
        return self._deliver(recipient, subject, body, account_id, attachments, error_redirect)

    def _send_test_mail(
        self,
        subject: str,
        body: str,
        attachments: Optional[Any],
        error_redirect: Optional[str],
    ) -> SendResult:
        test_user = self._test_user
        if not test_user.is_complete:
            raise ConfigurationError(self._(INCOMPLETE_TEST_USER))

        relay = type(self)(
            test_user.platform,
            test_user.webservicespwd,
            log_store=self.log_store,
            test_user=test_user,
            on_failure=self.on_failure,
            translator=self._,
            timeout=self.timeout,
            client_factory=self._client_factory,
            raise_on_failure=self.raise_on_failure,
        )
        return relay.send_mail(
            test_user.username,
            f"{TEST_SUBJECT_PREFIX}{subject}",
            body,
            test_user.nr_co_account,
            attachments,
            error_redirect,
        )

    def _deliver(
        self,
        recipient: str,
        subject: str,
        body: str,
        account_id: int,
        attachments: Optional[Any],
        error_redirect: Optional[str],
    ) -> SendResult:
        try:
            raw_status = self._call(
                "sendMsg",
                self.webservices_password,
                recipient,
                subject,
                body,
                None,
                attachments,
                account_id,
            )
            status = self._parse_status(raw_status)
            if status != 0:
                raise RemoteError(self._lookup_error(status), code=status)
        except (RemoteError, TransportError) as e:
            self._log_attempt(recipient, subject, account_id, str(e))
            logger.error(f"Relay to {recipient} failed (co-account {account_id}): {e}")
            result = SendResult(
                success=False,
                recipient=recipient,
                subject=subject,
                account_id=account_id,
                error_message=str(e),
                error_code=getattr(e, "code", None),
            )
            if self.on_failure is not None:
                self.on_failure(result, self._(USER_FAILURE_NOTICE), error_redirect)
            if self.raise_on_failure:
                raise
            return result

        self._log_attempt(recipient, subject, account_id, SUCCESS_MESSAGE)
        logger.info(f"{SUCCESS_MESSAGE}: {recipient} '{subject}' (co-account {account_id})")
        return SendResult(
            success=True, recipient=recipient, subject=subject, account_id=account_id
        )

    def _call(self, operation: str, *args: Any) -> Any:
        try:
            return getattr(self._client.service, operation)(*args)
        except (zeep.exceptions.TransportError, requests.RequestException) as e:
            raise TransportError(f"SOAP call {operation} failed: {e}") from e
        except zeep.exceptions.Fault as e:
            raise RemoteError(f"SOAP fault in {operation}: {e.message}") from e
        except zeep.exceptions.Error as e:
            raise RemoteError(f"SOAP call {operation} failed: {e}") from e

    @staticmethod
    def _parse_status(raw_status: Any) -> int:
        try:
            return int(raw_status)
        except (TypeError, ValueError) as e:
            raise RemoteError(f"Unexpected sendMsg status: {raw_status!r}") from e

    def _lookup_error(self, code: int) -> str:
        """Translate a sendMsg status through the service's error code table."""
        raw = self._call("returnJsonErrorCodes")
        try:
            codes = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise RemoteError(f"Unreadable error code table: {e}", code=code) from e

        message = codes.get(str(code)) if isinstance(codes, dict) else None
        if message is None:
            return f"Unknown error code {code}"
        return str(message)

    def _log_attempt(self, recipient: str, subject: str, account_id: int, error_message: str) -> None:
        self.log_store.add(
            SendLogRecord(
                recipient=recipient,
                subject=subject,
                account_id=account_id,
                service_credential=self.webservices_password,
                error_message=error_message,
            )
        )
