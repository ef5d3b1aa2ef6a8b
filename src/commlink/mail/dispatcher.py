"""SMTP mail dispatcher with attachments, inline images and calendar invites."""

import logging
import mimetypes
import os
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr, formatdate, make_msgid
from functools import partial
from pathlib import Path
from typing import Any, Callable, Mapping, NamedTuple, Optional, Sequence, Union

from pydantic import BaseModel

from ..config import SmtpConfig, SmtpSecurity
from ..ics.builder import build_ics
from ..models.event import IcsEvent
from ..models.recipient import Recipient, RecipientLike, coerce_recipients
from ..utils.exceptions import AttachmentError, ConfigurationError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_SENDER_NAME = "Commlink Mailer"
ALT_BODY = "To view the message, please use an HTML compatible email viewer!"
ICS_PARAMS = {"method": "REQUEST", "charset": "UTF-8"}


class SmtpTransport(BaseModel):
    """Connection settings for the SMTP session."""

    host: str
    use_auth: bool
    username: str = ""
    password: str = ""
    port: int = 587
    security: SmtpSecurity = SmtpSecurity.STARTTLS
    timeout: float = 30.0

    model_config = {"frozen": True}


class _QueuedPart(NamedTuple):
    data: bytes
    maintype: str
    subtype: str
    filename: str
    disposition: str
    cid: Optional[str] = None
    params: Optional[Mapping[str, str]] = None


def join_attachment_path(directory: str, name: str) -> str:
    """Append ``name`` to ``directory``, adding the trailing separator if missing."""
    if not directory:
        return name
    if not directory.endswith(("/", os.sep)):
        directory += os.sep
    return directory + name


def _split_mime_type(name: str, mime_type: Optional[str]) -> tuple[str, str]:
    mime_type = mime_type or mimetypes.guess_type(name)[0] or "application/octet-stream"
    maintype, _, subtype = mime_type.partition("/")
    return maintype, subtype or "octet-stream"


def _format_address(recipient: Recipient) -> str:
    # Bare address when there is no display name; formataddr would quote it
    return formataddr((recipient.display_name or "", recipient.address))


def _read_attachment(path: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise AttachmentError(f"Could not read attachment {path}: {e}") from e


class MailDispatcher:
    """
    Send mail over one persistent SMTP session.

    The session is opened on the first send and reused until ``close()``.
    Use the dispatcher as a context manager so the session is released on
    every exit path::

        with MailDispatcher.from_config(config.smtp) as mailer:
            mailer.attach_ics({"summary": "Parent evening"})
            mailer.send("school@example.com", ["parent@example.com"], "Invite", "<p>Hi</p>")
    """

    def __init__(
        self,
        default_sender_name: str = DEFAULT_SENDER_NAME,
        test_recipient: Optional[RecipientLike] = None,
        smtp_factory: Optional[Callable[..., smtplib.SMTP]] = None,
    ):
        """
        Args:
            default_sender_name: Display name used when the sender has none
            test_recipient: Default recipient for test-mode sends
            smtp_factory: Builds the SMTP session, called as
                ``factory(host, port, timeout=...)``; chosen from the
                security mode when omitted
        """
        self.default_sender_name = default_sender_name
        self.test_recipient = Recipient.coerce(test_recipient) if test_recipient else None
        self._smtp_factory = smtp_factory
        self._transport: Optional[SmtpTransport] = None
        self._session: Optional[smtplib.SMTP] = None
        self._attachments: list[_QueuedPart] = []
        self._inline_images: list[_QueuedPart] = []

    @classmethod
    def from_config(cls, config: SmtpConfig, **kwargs: Any) -> "MailDispatcher":
        test_recipient = None
        if config.test_recipient:
            test_recipient = Recipient(
                address=config.test_recipient, display_name=config.test_recipient_name
            )
        dispatcher = cls(
            default_sender_name=config.from_name, test_recipient=test_recipient, **kwargs
        )
        if config.host:
            dispatcher.configure_transport(
                host=config.host,
                use_auth=config.use_auth,
                username=config.username or "",
                password=config.password or "",
                port=config.port,
                security=config.security,
                timeout=config.timeout,
            )
        return dispatcher

    def __enter__(self) -> "MailDispatcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def transport(self) -> Optional[SmtpTransport]:
        return self._transport

    @property
    def connected(self) -> bool:
        return self._session is not None

    def configure_transport(
        self,
        host: str,
        use_auth: bool,
        username: str = "",
        password: str = "",
        port: int = 587,
        security: Union[SmtpSecurity, str] = SmtpSecurity.STARTTLS,
        timeout: float = 30.0,
    ) -> None:
        """
        Set the SMTP server to use.

        STARTTLS is normally served on port 587, implicit TLS (``smtps``) on 465.
        Credentials are only used when ``use_auth`` is set. Reconfiguring
        closes any open session.
        """
        if not host:
            raise ConfigurationError("SMTP host cannot be empty.")
        if use_auth and not username:
            raise ConfigurationError("SMTP username cannot be empty when authentication is enabled.")

        self.close()
        self._transport = SmtpTransport(
            host=host,
            use_auth=use_auth,
            username=username if use_auth else "",
            password=password if use_auth else "",
            port=port,
            security=SmtpSecurity(security),
            timeout=timeout,
        )
        logger.debug(f"SMTP transport set to {host}:{port} ({self._transport.security.value})")

    def attach_file(
        self,
        path: str,
        name: str,
        mime_type: Optional[str] = None,
        disposition: str = "attachment",
    ) -> None:
        """
        Queue a file for the next send.

        Args:
            path: Directory holding the file (trailing separator optional)
            name: File name, also used as the attachment name
            mime_type: Content type, guessed from the name when omitted
            disposition: ``attachment`` or ``inline``

        Raises:
            AttachmentError: If the file cannot be read
        """
        data = _read_attachment(join_attachment_path(path, name))
        maintype, subtype = _split_mime_type(name, mime_type)
        self._attachments.append(_QueuedPart(data, maintype, subtype, name, disposition))

    def attach_inline_image(
        self,
        path: str,
        cid: str,
        name: str,
        mime_type: Optional[str] = None,
    ) -> None:
        """Queue an image referenced from the HTML body as ``cid:<cid>``."""
        data = _read_attachment(join_attachment_path(path, name))
        maintype, subtype = _split_mime_type(name, mime_type)
        self._inline_images.append(
            _QueuedPart(data, maintype, subtype, name, "inline", cid=cid.strip("<>"))
        )

    def attach_ics(
        self,
        fields: Union[IcsEvent, Mapping[str, Any], None] = None,
        filename: str = "invite.ics",
        **build_kwargs: Any,
    ) -> str:
        """
        Queue a calendar invite built from ``fields``.

        Returns:
            The generated invite text
        """
        ics = build_ics(fields, **build_kwargs)
        self._attachments.append(
            _QueuedPart(ics.encode("utf-8"), "text", "calendar", filename, "attachment", params=ICS_PARAMS)
        )
        return ics

    def clear_attachments(self) -> None:
        self._attachments.clear()
        self._inline_images.clear()

    def send(
        self,
        sender: RecipientLike,
        to: Sequence[RecipientLike],
        subject: str,
        body: str,
        test_mode: bool = False,
        test_recipient: Optional[RecipientLike] = None,
        is_html: bool = True,
        cc: Sequence[RecipientLike] = (),
        bcc: Sequence[RecipientLike] = (),
    ) -> bool:
        """
        Send a message, consuming the queued attachments.

        In test mode ``to`` is ignored and the message goes to the test
        recipient only; cc and bcc are applied as usual.

        Returns:
            True once the server accepted the message

        Raises:
            ConfigurationError: If no transport or test recipient is configured
            TransportError: If the SMTP exchange fails
        """
        sender = Recipient.coerce(sender)
        if test_mode:
            target = test_recipient or self.test_recipient
            if target is None:
                raise ConfigurationError("Test mode requires a test recipient.")
            to_list = [Recipient.coerce(target)]
        else:
            to_list = coerce_recipients(to)
        cc_list = coerce_recipients(cc)
        bcc_list = coerce_recipients(bcc)

        if not (to_list or cc_list or bcc_list):
            raise ValueError("At least one recipient is required")

        try:
            msg = self._build_message(sender, to_list, cc_list, subject, body, is_html)
        finally:
            self.clear_attachments()

        # Bcc only travels in the envelope
        envelope = [r.address for r in (*to_list, *cc_list, *bcc_list)]
        session = self._ensure_session()
        try:
            refused = session.send_message(msg, from_addr=sender.address, to_addrs=envelope)
        except (smtplib.SMTPException, OSError) as e:
            self._drop_session()
            raise TransportError(f"Failed to send mail '{subject}': {e}") from e

        if refused:
            logger.warning(f"Recipients refused by server: {', '.join(refused)}")
        logger.info(f"Mail sent: {subject} ({len(envelope)} recipient(s))")
        return True

    def close(self) -> None:
        """Close the SMTP session if one is open."""
        if self._session is None:
            return
        try:
            self._session.quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.debug(f"SMTP quit failed, closing socket: {e}")
            self._session.close()
        finally:
            self._session = None
            logger.debug("SMTP session closed")

    def _build_message(
        self,
        sender: Recipient,
        to_list: list[Recipient],
        cc_list: list[Recipient],
        subject: str,
        body: str,
        is_html: bool,
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = formataddr((sender.display_name or self.default_sender_name, sender.address))
        if to_list:
            msg["To"] = ", ".join(_format_address(r) for r in to_list)
        if cc_list:
            msg["Cc"] = ", ".join(_format_address(r) for r in cc_list)
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid()

        if is_html:
            msg.set_content(ALT_BODY)
            msg.add_alternative(body, subtype="html")
            html_part = msg.get_payload()[-1]
            for part in self._inline_images:
                html_part.add_related(
                    part.data,
                    maintype=part.maintype,
                    subtype=part.subtype,
                    cid=f"<{part.cid}>",
                    filename=part.filename,
                    disposition="inline",
                )
        else:
            msg.set_content(body)
            for part in self._inline_images:
                msg.add_attachment(
                    part.data,
                    maintype=part.maintype,
                    subtype=part.subtype,
                    cid=f"<{part.cid}>",
                    filename=part.filename,
                    disposition="inline",
                )

        for part in self._attachments:
            msg.add_attachment(
                part.data,
                maintype=part.maintype,
                subtype=part.subtype,
                filename=part.filename,
                disposition=part.disposition,
                params=part.params,
            )
        return msg

    def _ensure_session(self) -> smtplib.SMTP:
        if self._session is not None:
            return self._session
        if self._transport is None:
            raise ConfigurationError("SMTP transport is not configured; call configure_transport() first.")

        transport = self._transport
        factory = self._smtp_factory
        if factory is None:
            if transport.security is SmtpSecurity.SMTPS:
                factory = partial(smtplib.SMTP_SSL, context=ssl.create_default_context())
            else:
                factory = smtplib.SMTP

        try:
            session = factory(transport.host, transport.port, timeout=transport.timeout)
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(
                f"Failed to connect to SMTP server {transport.host}:{transport.port}: {e}"
            ) from e

        try:
            if transport.security is SmtpSecurity.STARTTLS:
                session.starttls(context=ssl.create_default_context())
            if transport.use_auth:
                session.login(transport.username, transport.password)
        except (smtplib.SMTPException, OSError) as e:
            # Not stored yet, so close() would never reach it
            session.close()
            raise TransportError(
                f"SMTP handshake with {transport.host}:{transport.port} failed: {e}"
            ) from e

        logger.info(f"SMTP session opened to {transport.host}:{transport.port}")
        self._session = session
        return session

    def _drop_session(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            try:
                session.close()
            except OSError as e:
                logger.debug(f"Ignoring error while dropping SMTP session: {e}")
