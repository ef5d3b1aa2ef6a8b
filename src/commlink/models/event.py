"""Calendar invite (ICS) event model."""

import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional

from pydantic import BaseModel, Field

from ..utils.date_utils import ensure_utc, parse_datetime, utc_now

DEFAULT_DURATION = timedelta(hours=1)
DEFAULT_LEAD_TIME = timedelta(days=1)
UID_DOMAIN = "commlink"


def generate_uid() -> str:
    return f"{uuid.uuid4()}@{UID_DOMAIN}"


class IcsParty(BaseModel):
    """Organizer or attendee of an invite."""

    name: str = ""
    email: str = ""


class IcsEvent(BaseModel):
    """Fields of a single VEVENT. Built per invite and never stored."""

    uid: str
    sequence: int = 0
    dtstamp: datetime
    dtstart: datetime
    dtend: datetime
    summary: str = ""
    location: str = ""
    description: str = ""
    organizer: IcsParty = Field(default_factory=IcsParty)
    attendee: IcsParty = Field(default_factory=IcsParty)

    @classmethod
    def with_defaults(
        cls,
        fields: Optional[Mapping[str, Any]] = None,
        now: Optional[datetime] = None,
        uid_factory: Optional[Callable[[], str]] = None,
    ) -> "IcsEvent":
        """
        Fill in missing fields relative to ``now``.

        Defaults: a generated uid, dtstamp of ``now``, a start one day ahead
        and an end one hour after the start.

        Args:
            fields: Partial event fields
            now: Reference time, naive values taken as UTC (current time when omitted)
            uid_factory: Callable producing the uid (random when omitted)

        Returns:
            Complete IcsEvent
        """
        data = {k: v for k, v in dict(fields or {}).items() if v is not None}
        now = ensure_utc(now) if now is not None else utc_now()

        data.setdefault("dtstamp", now)
        data["dtstart"] = parse_datetime(data.get("dtstart", now + DEFAULT_LEAD_TIME))
        data.setdefault("dtend", data["dtstart"] + DEFAULT_DURATION)
        if "uid" not in data:
            data["uid"] = (uid_factory or generate_uid)()
        return cls.model_validate(data)
