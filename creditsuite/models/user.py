from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from creditsuite.models.plan import is_unlimited

ADMIN_ROLES = frozenset({"admin", "super_admin"})


class UserAccount(BaseModel):
    """Authenticated subject as seen by the entitlement core (credits -1 = unlimited)."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: str = "user"
    status: str = "active"
    plan: str = "free"
    credits: int = 0
    created_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def has_unlimited_credits(self) -> bool:
        return is_unlimited(self.credits)
