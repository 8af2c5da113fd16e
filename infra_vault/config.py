"""
Vault configuration: master secret loading and validated settings.

Reads settings from the environment (after loading ``.env.local``):
    VAULT_MASTER_SECRET   = <operator passphrase>      (required)
    VAULT_KDF_ITERATIONS  = <int, >= 10000>            (optional)
    VAULT_DATABASE_PATH   = <sqlite file>              (default: vault.db)
    VAULT_LOG_LEVEL       = <loguru level>             (default: INFO)
    VAULT_MCP_API_KEY     = <bearer token for the MCP server>
    MCP_AUTH_DISABLED     = true to run the MCP server without auth

Security Note:
    The master secret is held as a ``SecretStr`` and never logged. Validation
    errors are re-raised without echoing input values.
"""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic import ValidationError as PydanticValidationError

from .crypto import MIN_PBKDF2_ITERATIONS, PBKDF2_ITERATIONS, KeyDeriver
from .errors import ValidationError

_LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


class VaultSettings(BaseModel):
    """Validated, immutable vault configuration."""

    model_config = ConfigDict(frozen=True)

    master_secret: SecretStr
    kdf_iterations: int = Field(default=PBKDF2_ITERATIONS, ge=MIN_PBKDF2_ITERATIONS)
    database_path: str = "vault.db"
    log_level: str = "INFO"
    mcp_api_key: SecretStr | None = None
    mcp_auth_disabled: bool = False

    @field_validator("master_secret")
    @classmethod
    def require_master_secret(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("master secret must not be empty")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"unsupported log level {v!r}")
        return level

    @classmethod
    def create(cls, **values) -> "VaultSettings":
        """Build settings, converting pydantic errors into ``ValidationError``."""
        try:
            return cls(**values)
        except PydanticValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                for err in exc.errors(include_input=False, include_url=False)
            )
            raise ValidationError(f"Invalid vault configuration: {details}") from None

    @classmethod
    def from_env(cls, env_file: str | None = ".env.local") -> "VaultSettings":
        """Load settings from the environment.

        Raises:
            ValidationError: If VAULT_MASTER_SECRET is missing or a value is
                invalid. The process should refuse to start.
        """
        if env_file:
            load_dotenv(env_file)

        master_secret = os.environ.get("VAULT_MASTER_SECRET", "")
        if not master_secret.strip():
            raise ValidationError(
                "VAULT_MASTER_SECRET must be set. "
                "The vault refuses to start without a master secret."
            )

        values: dict = {
            "master_secret": master_secret,
            "database_path": os.environ.get("VAULT_DATABASE_PATH", "vault.db"),
            "log_level": os.environ.get("VAULT_LOG_LEVEL", "INFO"),
            "mcp_api_key": os.environ.get("VAULT_MCP_API_KEY") or None,
            "mcp_auth_disabled": os.environ.get("MCP_AUTH_DISABLED", "").lower() == "true",
        }
        raw_iterations = os.environ.get("VAULT_KDF_ITERATIONS")
        if raw_iterations:
            try:
                values["kdf_iterations"] = int(raw_iterations)
            except ValueError:
                raise ValidationError(
                    f"VAULT_KDF_ITERATIONS must be an integer, got {raw_iterations!r}"
                ) from None
        return cls.create(**values)

    def key_deriver(self) -> KeyDeriver:
        return KeyDeriver(self.master_secret.get_secret_value(), self.kdf_iterations)
