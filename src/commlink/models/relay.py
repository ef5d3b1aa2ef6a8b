"""Models for the SOAP message relay."""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..utils.date_utils import utc_now

SUCCESS_MESSAGE = "Mail sent successfully"


class TestUser(BaseModel):
    """Where relay traffic goes in debug mode."""

    __test__ = False  # not a pytest test class

    platform: str = ""
    webservicespwd: str = ""
    username: str = ""
    nr_co_account: int = 0

    model_config = {"frozen": True}

    @property
    def is_complete(self) -> bool:
        return bool(
            self.platform and self.webservicespwd and self.username and self.nr_co_account
        )

    def merged(self, **changes: Any) -> "TestUser":
        """Return a copy with ``changes`` applied over the current values."""
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown test user fields: {', '.join(sorted(unknown))}")
        return type(self).model_validate({**self.model_dump(), **changes})


class SendLogRecord(BaseModel):
    """One relay attempt, successful or not."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    recipient: str
    subject: str
    account_id: int
    service_credential: str
    error_message: str
    timestamp: datetime = Field(default_factory=utc_now)


class SendResult(BaseModel):
    """Outcome of a relay send."""

    success: bool
    recipient: str
    subject: str
    account_id: int
    error_message: Optional[str] = None
    error_code: Optional[int] = None

    def __bool__(self) -> bool:
        return self.success
