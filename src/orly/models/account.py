"""Data models for login and subscription responses."""

from pydantic import BaseModel, Field


class Credentials(BaseModel):
    """Response of the credential login endpoint."""

    logged_in: bool = False


class Subscription(BaseModel):
    cancellation_date: str | None = None


class Trial(BaseModel):
    trial_expiration_date: str | None = None


class BillingInfo(BaseModel):
    """Subscription details of the logged in account."""

    subscription: Subscription = Field(default_factory=Subscription)
    trial: Trial = Field(default_factory=Trial)
