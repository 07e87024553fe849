from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


class CodeRequest(BaseModel):
    identity: Optional[str] = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("identity", "email"),
    )


class CodeRequestResponse(BaseModel):
    message: str
    expires_in_seconds: int


class CodeVerifyRequest(BaseModel):
    identity: Optional[str] = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("identity", "email"),
    )
    code: Optional[str] = Field(default=None, max_length=32)

    @field_validator("code", mode="before")
    @classmethod
    def coerce_numeric_code(cls, value: Any) -> Any:
        # Dashboards sometimes post the code as a JSON number.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class SessionUser(BaseModel):
    identity: str
    role: str


class CodeVerifyResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in_seconds: int
    user: SessionUser
