"""Identity provider used to stamp authorship on version-control records.

Authorization is enforced by the backing platform; this module only answers
"who is calling" so that ``created_by`` and ``org_id`` can be recorded.
"""

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CurrentUser(BaseModel):
    """Authenticated caller as reported by the platform."""

    email: str = Field(..., description="User email")
    organization_id: Optional[str] = Field(default=None, description="Organization ID")
    role: str = Field(default="user", description="Role string")

    model_config = ConfigDict(frozen=True)


class IdentityProvider(ABC):
    """Source of the current caller's identity."""

    @abstractmethod
    async def current_user(self) -> CurrentUser:
        """Return the current user."""


class StaticIdentityProvider(IdentityProvider):
    """Identity provider that always returns the same user."""

    def __init__(self, user: Optional[CurrentUser] = None):
        self.user = user or CurrentUser(email="system@archonflow.local", role="service")

    async def current_user(self) -> CurrentUser:
        return self.user
