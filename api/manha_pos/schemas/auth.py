from pydantic import BaseModel, Field


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str


class PinRequest(BaseModel):
    pin: str = Field(min_length=1, max_length=16)


class SectionAccessRequest(BaseModel):
    pin: str | None = None


class SectionAccessResponse(BaseModel):
    section: str
    granted: bool


class LockState(BaseModel):
    locked: bool
