"""Caller identity schemas."""

from typing import Optional

from pydantic import BaseModel, Field


class AuthenticatedUser(BaseModel):
    """The caller as identified by the hosting platform."""

    email: str = Field(..., description="Caller's email address")
    name: Optional[str] = Field(None, description="Display name derived from the email")

    @classmethod
    def from_email(cls, email: str) -> "AuthenticatedUser":
        """Build a user, deriving "Jane Doe" from "jane.doe@example.com"."""
        local_part = email.split("@")[0]
        name = " ".join(
            part[:1].upper() + part[1:] for part in local_part.split(".") if part
        )
        return cls(email=email, name=name or None)
