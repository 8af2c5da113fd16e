"""Encrypted secrets vault with placeholder injection for configuration text."""

from .config import VaultSettings
from .crypto import KeyDeriver
from .database import SecretsDatabase
from .errors import (
    FormatError,
    IntegrityError,
    SecretNotFound,
    TamperError,
    TemplateNotFound,
    ValidationError,
    VaultError,
)
from .injection import InjectionReport, inject, preview, scan
from .keys import normalize_key
from .manager import ImportResult, SecretsVault
from .templates import ApplyResult, TemplateApplier

__all__ = [
    "ApplyResult",
    "FormatError",
    "ImportResult",
    "InjectionReport",
    "IntegrityError",
    "KeyDeriver",
    "SecretNotFound",
    "SecretsDatabase",
    "SecretsVault",
    "TamperError",
    "TemplateApplier",
    "TemplateNotFound",
    "ValidationError",
    "VaultError",
    "VaultSettings",
    "inject",
    "normalize_key",
    "preview",
    "scan",
]
