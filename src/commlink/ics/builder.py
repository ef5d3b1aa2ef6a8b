"""Build calendar invite (.ics) text for mail attachments."""

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from ..models.event import IcsEvent
from ..utils.date_utils import format_ics_local, format_ics_utc

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Europe/Brussels"
ESCAPED_FIELDS = ("summary", "location", "description")
FOLD_LIMIT = 75

# Backslash must come first so later rules never see inserted backslashes
ESCAPE_RULES = (
    ("\\", "\\\\"),
    (",", "\\,"),
    (";", "\\;"),
    (":", "\\:"),
    ("\n", "\\n"),
    ("\r", "\\r"),
)

ICS_TEMPLATE = "\r\n".join(
    [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Commlink//Calendar Invite//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:REQUEST",
        "BEGIN:VEVENT",
        "UID:{uid}",
        "SEQUENCE:{sequence}",
        "DTSTAMP:{dtstamp}",
        "DTSTART;TZID={timezone}:{dtstart}",
        "DTEND;TZID={timezone}:{dtend}",
        "SUMMARY:{summary}",
        "LOCATION:{location}",
        "DESCRIPTION:{description}",
        'ORGANIZER;CN="{organizer_name}":mailto:{organizer_email}',
        'ATTENDEE;CN="{attendee_name}";ROLE=REQ-PARTICIPANT;PARTSTAT=NEEDS-ACTION;RSVP=TRUE:mailto:{attendee_email}',
        "STATUS:CONFIRMED",
        "TRANSP:OPAQUE",
        "END:VEVENT",
        "END:VCALENDAR",
        "",
    ]
)


def escape_text(value: str) -> str:
    """Escape an iCalendar TEXT value in a single pass over the rules."""
    for char, replacement in ESCAPE_RULES:
        value = value.replace(char, replacement)
    return value


def _param_value(value: str) -> str:
    # Quoted parameter values cannot hold DQUOTE or line breaks
    return value.replace('"', "'").replace("\r", " ").replace("\n", " ")


def fold_line(line: str, limit: int = FOLD_LIMIT) -> str:
    """
    Fold a content line into chunks of at most ``limit`` octets.

    Continuation lines start with a single space, which counts toward the
    limit. UTF-8 sequences are never split.
    """
    chunks = []
    current, size = "", 0
    for char in line:
        width = len(char.encode("utf-8"))
        if size + width > limit:
            chunks.append(current)
            current, size = " ", 1
        current += char
        size += width
    chunks.append(current)
    return "\r\n".join(chunks)


def build_ics(
    fields: Union[IcsEvent, Mapping[str, Any], None] = None,
    escape_fields: Iterable[str] = ESCAPED_FIELDS,
    *,
    now: Optional[datetime] = None,
    uid_factory: Optional[Callable[[], str]] = None,
    timezone: str = DEFAULT_TIMEZONE,
) -> str:
    """
    Render one VEVENT invite as iCalendar text.

    Missing fields get defaults relative to ``now`` (see IcsEvent.with_defaults).
    DTSTAMP is written in UTC, DTSTART/DTEND as wall time in ``timezone``.
    Content lines longer than 75 octets are folded.

    Args:
        fields: IcsEvent or mapping of its fields
        escape_fields: Free-text fields to escape
        now: Reference time for defaults, injectable for reproducible output
        uid_factory: Uid generator, injectable for reproducible output
        timezone: Olson name used for TZID

    Returns:
        The invite text with CRLF line endings
    """
    if isinstance(fields, IcsEvent):
        event = fields
    else:
        event = IcsEvent.with_defaults(fields, now=now, uid_factory=uid_factory)

    text = {name: getattr(event, name) for name in ESCAPED_FIELDS}
    for name in escape_fields:
        if name not in text:
            raise ValueError(f"Field '{name}' is not a free-text field")
        text[name] = escape_text(text[name])

    logger.debug(f"Building invite {event.uid}")
    rendered = ICS_TEMPLATE.format(
        uid=event.uid,
        sequence=event.sequence,
        dtstamp=format_ics_utc(event.dtstamp),
        timezone=timezone,
        dtstart=format_ics_local(event.dtstart, timezone),
        dtend=format_ics_local(event.dtend, timezone),
        organizer_name=_param_value(event.organizer.name or event.organizer.email),
        organizer_email=event.organizer.email,
        attendee_name=_param_value(event.attendee.name or event.attendee.email),
        attendee_email=event.attendee.email,
        **text,
    )
    return "\r\n".join(fold_line(line) for line in rendered.split("\r\n"))
