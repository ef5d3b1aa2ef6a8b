"""Mail address model shared by the mail dispatcher."""

from typing import Any, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel

RecipientLike = Union["Recipient", str, Tuple[str, Optional[str]], Mapping[str, Any]]


class Recipient(BaseModel):
    """An address with an optional display name."""

    address: str
    display_name: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def name(self) -> str:
        """Display name, falling back to the address."""
        return self.display_name or self.address

    @classmethod
    def coerce(cls, value: RecipientLike) -> "Recipient":
        """
        Build a Recipient from the loose shapes callers tend to pass.

        Accepts a Recipient, a bare address, an ``(address, name)`` tuple or a
        mapping with ``address``/``email`` and optional ``name``/``display_name``.
        """
        if isinstance(value, Recipient):
            return value
        if isinstance(value, str):
            return cls(address=value)
        if isinstance(value, tuple):
            address, name = value
            return cls(address=address, display_name=name)
        if isinstance(value, Mapping):
            address = value.get("address") or value.get("email")
            if not address:
                raise ValueError(f"Recipient mapping has no address: {dict(value)}")
            return cls(
                address=address,
                display_name=value.get("display_name") or value.get("name"),
            )
        raise TypeError(f"Cannot build a Recipient from {type(value).__name__}")


def coerce_recipients(values: Optional[Sequence[RecipientLike]]) -> list[Recipient]:
    return [Recipient.coerce(v) for v in values or ()]
