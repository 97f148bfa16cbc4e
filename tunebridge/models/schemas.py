"""
Goal: Pydantic models for credential bundles and request bodies.
We keep them boring on purpose so they're stable contracts. Field aliases match
the camelCase the browser sends.
"""

from __future__ import annotations

from typing import Any, Dict, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tunebridge.errors import InvalidRequest

_Model = TypeVar("_Model", bound=BaseModel)


class _Body(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, str_strip_whitespace=True)


# ---- Credential bundles ------------------------------------------------------


class AppleCredentials(_Body):
    team_id: str = Field(alias="teamId", min_length=1)
    key_id: str = Field(alias="keyId", min_length=1)
    private_key: str = Field(alias="privateKey", min_length=1)

    @field_validator("private_key")
    @classmethod
    def _unescape_newlines(cls, v: str) -> str:
        # Keys pasted from .env files often carry literal "\n"
        return v.replace("\\n", "\n")


class SpotifyCredentials(_Body):
    client_id: str = Field(alias="clientId", min_length=1)
    client_secret: str = Field(alias="clientSecret", min_length=1)


class GoogleCredentials(_Body):
    client_id: str = Field(alias="clientId", min_length=1)
    client_secret: str = Field(alias="clientSecret", min_length=1)
    api_key: str = Field(alias="apiKey", min_length=1)


Credentials = Union[AppleCredentials, SpotifyCredentials, GoogleCredentials]

CREDENTIAL_MODELS: Dict[str, Type[_Body]] = {
    "apple": AppleCredentials,
    "spotify": SpotifyCredentials,
    "youtube": GoogleCredentials,
}


# ---- Request bodies ----------------------------------------------------------


class CodeExchangeRequest(_Body):
    code: str = Field(min_length=1)
    code_verifier: str = Field(alias="codeVerifier", min_length=1)
    redirect_uri: str = Field(alias="redirectUri", min_length=1)


class RefreshRequest(_Body):
    refresh_token: str = Field(alias="refreshToken", min_length=1)


class HealthResponse(BaseModel):
    status: str
    name: str
    vendor: str
    port: int


# ---- Parsing -----------------------------------------------------------------


def required_message(model: Type[BaseModel]) -> str:
    names = [f.alias or name for name, f in model.model_fields.items()]
    return "Required: " + ", ".join(names)


def parse_body(model: Type[_Model], body: Any) -> _Model:
    """Validate a raw JSON body; anything missing or empty is a 400."""
    if not isinstance(body, dict):
        raise InvalidRequest("Invalid request")
    try:
        return model.model_validate(body)
    except ValidationError:
        raise InvalidRequest(required_message(model)) from None


def parse_credentials(vendor: str, body: Any) -> Credentials:
    return parse_body(CREDENTIAL_MODELS[vendor], body)  # type: ignore[return-value]
