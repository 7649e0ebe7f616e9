"""Session schemas — the cached identity and the provider's own session."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from cvbank.schemas.profile import UserRole


class SessionState(BaseModel):
    """Snapshot of the authenticated identity held in the session cache.

    Learn: This is the only thing the rest of the app reads to answer
    "who is the current user" and "what role do they have". The role is
    resolved from the persisted User record, never chosen by the client.
    """
    token: str
    user_id: str
    user_name: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class ProviderSession(BaseModel):
    """The identity provider's session object (tokens + subject)."""
    user_id: str
    email: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
