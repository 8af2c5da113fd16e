"""Error taxonomy for the secrets vault.

Callers rely on these kinds staying distinct: a missing secret is an expected
outcome, an integrity failure means the stored envelope was corrupted or
tampered with and should reach an operator.

Messages reference key identifiers only, never values or ciphertext.
"""


class VaultError(Exception):
    """Base class for all vault errors."""


class ValidationError(VaultError):
    """Raised for empty/malformed input or invalid configuration."""


class SecretNotFound(VaultError):
    """Raised when no envelope exists for an (owner_id, key) pair."""

    def __init__(self, key: str):
        super().__init__(f"Secret '{key}' not found")
        self.key = key


class IntegrityError(VaultError):
    """Raised when a stored envelope cannot be trusted."""


class TamperError(IntegrityError):
    """Raised when authentication-tag verification fails."""


class FormatError(IntegrityError):
    """Raised when a stored envelope record cannot be decoded."""


class TemplateNotFound(VaultError):
    """Raised when a named secret template does not exist."""

    def __init__(self, name: str):
        super().__init__(f"Template '{name}' not found")
        self.name = name
