from pydantic import BaseModel


class PublicProfile(BaseModel):
    id: str
    full_name: str | None = None
    avatar_url: str | None = None


class ContactProfile(BaseModel):
    id: str
    full_name: str | None = None
    avatar_url: str | None = None
    # No defaults: a public-only profile must not validate as a contact profile.
    email: str | None
    phone: str | None


class ProfileOut(BaseModel):
    id: str
    role: str
    full_name: str | None = None
    email: str | None = None
    phone: str | None = None
    avatar_url: str | None = None
    phone_verified: bool = False
    created_at: str | None = None
