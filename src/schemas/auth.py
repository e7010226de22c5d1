"""Pydantic schemas for the auth provider callbacks."""
from pydantic import BaseModel, ConfigDict, Field


class ProviderProfile(BaseModel):
    """Identity as reported by the auth provider."""

    email: str = Field(min_length=1)
    name: str | None = None
    image: str | None = None


class ProviderAccount(BaseModel):
    """Provider account linkage and tokens."""

    model_config = ConfigDict(populate_by_name=True)

    provider: str = Field(min_length=1)
    provider_account_id: str | None = Field(default=None, alias="providerAccountId")
    access_token: str | None = None
    refresh_token: str | None = None


class SignInRequest(BaseModel):
    """Payload of the provider's sign-in callback."""

    user: ProviderProfile
    account: ProviderAccount


class SignInResponse(BaseModel):
    """Sign-in decision; a denied sign-in is reported as an error response instead."""

    model_config = ConfigDict(populate_by_name=True)

    allowed: bool
    user_id: str = Field(alias="userId")


class SessionUser(BaseModel):
    """User portion of a session; `id` is attached once resolved."""

    email: str | None = None
    name: str | None = None
    image: str | None = None
    id: str | None = None


class SessionPayload(BaseModel):
    """Session object shaped by the session callback."""

    user: SessionUser | None = None
    expires: str | None = None
