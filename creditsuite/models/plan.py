"""
creditsuite/models/plan.py

Plan catalog models.

A plan bundles a monthly credit allotment with per-service permissions and
billing metadata. Plans are stored together as one camelCase JSON blob, so
every field carries its stored alias.
"""

from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from creditsuite.models.service import ServiceKey

UNLIMITED_CREDITS = -1
DEFAULT_CREDITS_PER_USE = 1


def is_unlimited(balance: int) -> bool:
    return balance == UNLIMITED_CREDITS


class ServicePermission(BaseModel):
    """One (plan, service) row: whether the service is enabled and what it costs."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key: ServiceKey
    name: str = ""
    enabled: bool = False
    credits_per_use: int = Field(DEFAULT_CREDITS_PER_USE, alias="creditsPerUse")

    @field_validator("credits_per_use", mode="before")
    @classmethod
    def default_missing_cost(cls, value):
        # stored blobs may carry an explicit null
        return DEFAULT_CREDITS_PER_USE if value is None else value


class Plan(BaseModel):
    """
    Plan represents one entitlement tier.

    - credits: monthly allotment; -1 means unlimited
    - is_active: offered publicly; inactive plans stay valid for assigned users
    - price/interval/express_credit_price/color: carried through, never
      consulted by entitlement checks
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    credits: int = 0
    price: float = 0.0
    interval: Literal["month", "year"] = "month"
    is_active: bool = Field(True, alias="isActive")
    services: List[ServicePermission] = Field(default_factory=list)
    express_credit_price: float = Field(0.0, alias="expressCreditPrice")
    color: str = "gray"
    max_whatsapp_instances: Optional[int] = Field(None, alias="maxWhatsAppInstances")

    def permission(self, key: ServiceKey) -> Optional[ServicePermission]:
        for perm in self.services:
            if perm.key == key:
                return perm
        return None

    def to_store(self) -> dict:
        """Serialize to the stored camelCase shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def placeholder_plan() -> Plan:
    """Zero-credit plan with no services; every access check against it fails."""
    return Plan(id="__unresolved__", name="Sem plano", credits=0, is_active=False, services=[])
