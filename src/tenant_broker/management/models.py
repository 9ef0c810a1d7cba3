from __future__ import annotations

from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field


class ArmBaseModel(BaseModel):
    """Base class for Azure Resource Manager payload helpers."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    @classmethod
    def from_arm(cls, payload: dict[str, Any]) -> Self:
        """Hydrate a model from a raw ARM list entry."""
        return cls.model_validate(payload)


class Tenant(ArmBaseModel):
    id: str | None = Field(default=None, alias="id")
    tenant_id: str = Field(alias="tenantId")
    display_name: str | None = Field(default=None, alias="displayName")
    default_domain: str | None = Field(default=None, alias="defaultDomain")
    tenant_category: str | None = Field(default=None, alias="tenantCategory")

    @property
    def label(self) -> str:
        return self.display_name or self.default_domain or self.tenant_id


class Subscription(ArmBaseModel):
    id: str = Field(alias="id")
    subscription_id: str = Field(alias="subscriptionId")
    display_name: str | None = Field(default=None, alias="displayName")
    tenant_id: str | None = Field(default=None, alias="tenantId")
    state: str | None = Field(default=None, alias="state")

    @property
    def label(self) -> str:
        return self.display_name or self.subscription_id


__all__ = ["ArmBaseModel", "Subscription", "Tenant"]
