from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl, field_validator, model_validator


class CheckoutSessionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId")
    organization_id: str | None = Field(default=None, alias="organizationId")
    email: EmailStr | None = None
    price_id: str = Field(alias="priceId")
    subscription: bool = False
    quantity: int = Field(default=1, ge=1)
    billing_type: Literal["individual", "organization"] = Field(default="individual", alias="billingType")
    success_url: HttpUrl | None = Field(default=None, alias="successUrl")
    cancel_url: HttpUrl | None = Field(default=None, alias="cancelUrl")

    @field_validator("price_id")
    @classmethod
    def _validate_price_id(cls, value: str) -> str:
        normalized = (value or "").strip()
        if not normalized:
            raise ValueError("Price ID is required")
        return normalized

    @model_validator(mode="after")
    def _validate_owner(self) -> "CheckoutSessionCreate":
        if not self.user_id and not self.organization_id:
            raise ValueError("Either userId or organizationId must be provided")
        if self.billing_type == "organization" and not self.organization_id:
            raise ValueError("organizationId is required for organization billing")
        return self

    def stripe_metadata(self) -> dict[str, str]:
        metadata = {
            "email": self.email or "",
            "subscription": "true" if self.subscription else "false",
            "billingType": self.billing_type,
            "quantity": str(self.quantity),
        }
        if self.billing_type == "organization" and self.organization_id:
            metadata["organizationId"] = self.organization_id
        elif self.user_id:
            metadata["userId"] = self.user_id
        return metadata


class CheckoutSessionOut(BaseModel):
    session_id: str = Field(serialization_alias="sessionId")
    billing_type: str = Field(serialization_alias="billingType")
    quantity: int


class PortalSessionOut(BaseModel):
    url: str
