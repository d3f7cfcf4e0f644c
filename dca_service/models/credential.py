"""Credential model: the Lighter account the DCA engine trades from."""

from datetime import datetime, timezone

from sqlmodel import SQLModel, Field

from dca_service.services.encryption import decrypt

DEFAULT_LIGHTER_HOST = "https://mainnet.zklighter.elliot.ai"


class Credential(SQLModel, table=True):
    __tablename__ = "credential"

    id: int | None = Field(default=None, primary_key=True)
    name: str = "default"
    lighter_host: str = DEFAULT_LIGHTER_HOST
    account_index: int = 0
    api_key_index: int = 3
    private_key_encrypted: str = ""  # Fernet token, see services.encryption
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def gateway_kwargs(self, encryption_key: str) -> dict:
        """Connection arguments for LighterGateway, with the key decrypted."""
        return {
            "host": self.lighter_host,
            "private_key": decrypt(self.private_key_encrypted, encryption_key),
            "api_key_index": self.api_key_index,
            "account_index": self.account_index,
        }
