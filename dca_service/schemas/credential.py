"""Pydantic schema for registering the Lighter credential."""

import re

from pydantic import BaseModel, Field, field_validator

from dca_service.models.credential import DEFAULT_LIGHTER_HOST

_HEX_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64,}$")


class CredentialCreate(BaseModel):
    name: str = Field(default="default", min_length=1, max_length=120)
    lighter_host: str = DEFAULT_LIGHTER_HOST
    account_index: int = Field(default=0, ge=0)
    api_key_index: int = Field(default=3, ge=0)
    private_key: str  # plaintext; encrypted before it is stored

    @field_validator("name", "lighter_host", "private_key")
    @classmethod
    def _strip(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("must not be empty")
        return text

    @field_validator("lighter_host")
    @classmethod
    def _validate_host(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("must start with http:// or https://")
        return value.rstrip("/")

    @field_validator("private_key")
    @classmethod
    def _validate_private_key(cls, value: str) -> str:
        if not _HEX_KEY_RE.fullmatch(value):
            raise ValueError("must be a hex string (at least 64 chars), with optional 0x prefix")
        return value
