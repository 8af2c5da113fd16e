"""
Infra Vault MCP Server - manage encrypted secrets via MCP tools.

This server exposes the vault to the dashboard: storing and revealing
secrets, key inventory export/import, placeholder scanning, secret injection
into Compose/.env text, and secret templates.

Every tool takes ``owner_id`` explicitly. Failures are reported as
``{"success": False, "error_type": ..., "error": ...}`` where ``error_type``
is one of ``validation``, ``not_found``, ``integrity`` or
``template_not_found``. Storage errors are not caught here.

Authentication:
    Set VAULT_MCP_API_KEY to require Bearer token authentication.
    Set MCP_AUTH_DISABLED=true to explicitly disable auth.
"""

import functools

from fastmcp import FastMCP
from fastmcp.server.auth import AccessToken, TokenVerifier
from loguru import logger

from .config import VaultSettings
from .crypto import generate_random_secret
from .database import SecretsDatabase
from .errors import (
    IntegrityError,
    SecretNotFound,
    TemplateNotFound,
    ValidationError,
    VaultError,
)
from .injection import find_potential_secrets, parse_env_format, scan
from .keys import normalize_key
from .manager import SecretsVault
from .templates import TemplateApplier

TOOL_NAMES = (
    "store_secret",
    "get_secret",
    "list_secrets",
    "delete_secret",
    "export_secrets",
    "import_secrets",
    "generate_secret",
    "scan_placeholders",
    "validate_placeholders",
    "preview_injection",
    "save_template",
    "list_templates",
    "delete_template",
    "apply_template",
)

_ERROR_TYPES = (
    (ValidationError, "validation"),
    (SecretNotFound, "not_found"),
    (IntegrityError, "integrity"),
    (TemplateNotFound, "template_not_found"),
)


class ApiKeyVerifier(TokenVerifier):
    """Simple API key verifier that validates against a configured key."""

    def __init__(self, api_key: str):
        super().__init__()
        self.api_key = api_key

    async def verify_token(self, token: str) -> AccessToken | None:
        if token == self.api_key:
            return AccessToken(
                token=token,
                client_id="api-key-client",
                scopes=["all"],
            )
        return None


def _error_response(exc: VaultError) -> dict:
    for exc_type, name in _ERROR_TYPES:
        if isinstance(exc, exc_type):
            return {"success": False, "error_type": name, "error": str(exc)}
    return {"success": False, "error_type": "vault", "error": str(exc)}


def vault_tool(func):
    """Turn vault errors into failure responses; let anything else propagate."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except IntegrityError as exc:
            logger.error(f"{func.__name__} failed integrity check: {exc}")
            return _error_response(exc)
        except VaultError as exc:
            return _error_response(exc)

    return wrapper


class VaultTools:
    """JSON-friendly operations over a vault and its templates."""

    def __init__(self, vault: SecretsVault, templates: TemplateApplier):
        self.vault = vault
        self.templates = templates

    @classmethod
    def from_settings(cls, settings: VaultSettings) -> "VaultTools":
        db = SecretsDatabase(settings.database_path)
        vault = SecretsVault(db, settings.key_deriver())
        return cls(vault, TemplateApplier(vault, db))

    # ── Secrets ────────────────────────────────────────────────────

    @vault_tool
    def store_secret(
        self, owner_id: str, key: str, value: str, description: str | None = None
    ) -> dict:
        """
        Encrypt and store a secret, replacing any existing value.

        Args:
            owner_id: Owner the secret belongs to
            key: Secret name; normalized to UPPER_SNAKE_CASE (e.g. "db-pass" -> "DB_PASS")
            value: The secret value
            description: Optional description shown in listings

        Returns:
            The normalized key the secret was stored under
        """
        stored_key = self.vault.store(owner_id, key, value, description)
        return {"success": True, "key": stored_key}

    @vault_tool
    def get_secret(self, owner_id: str, key: str) -> dict:
        """
        Decrypt and reveal a secret value.

        Returns error_type "not_found" if the secret does not exist and
        "integrity" if the stored secret is corrupted or was tampered with.
        """
        value = self.vault.retrieve(owner_id, key)
        return {"success": True, "key": normalize_key(key), "value": value}

    @vault_tool
    def list_secrets(self, owner_id: str) -> dict:
        """List secret keys and metadata (never values)."""
        infos = self.vault.list_keys(owner_id)
        return {
            "success": True,
            "secrets": [
                {
                    "key": info.key,
                    "description": info.description,
                    "created_at": info.created_at,
                    "updated_at": info.updated_at,
                }
                for info in infos
            ],
            "count": len(infos),
        }

    @vault_tool
    def delete_secret(self, owner_id: str, key: str) -> dict:
        """Delete a secret. Deleting a secret that does not exist succeeds."""
        self.vault.delete(owner_id, key)
        return {"success": True, "key": normalize_key(key)}

    @vault_tool
    def export_secrets(self, owner_id: str) -> dict:
        """Export the key inventory for backup. Values are never included."""
        keys = self.vault.export(owner_id)
        return {"success": True, "keys": keys, "count": len(keys)}

    @vault_tool
    def import_secrets(
        self,
        owner_id: str,
        secrets: list[dict] | None = None,
        env_content: str | None = None,
        overwrite: bool = False,
    ) -> dict:
        """
        Bulk import secrets.

        Args:
            owner_id: Owner the secrets belong to
            secrets: List of {"key", "value", "description"?} entries
            env_content: Alternatively, .env style KEY=value text
            overwrite: Replace secrets that already exist (skipped otherwise)
        """
        entries = list(secrets or [])
        if env_content:
            entries.extend(
                {"key": k, "value": v} for k, v in parse_env_format(env_content).items()
            )
        result = self.vault.import_secrets(owner_id, entries, overwrite=overwrite)
        return {
            "success": True,
            "stored": result.stored,
            "skipped": result.skipped,
            "failed": result.failed,
        }

    @vault_tool
    def generate_secret(self, length: int = 32) -> dict:
        """Generate a random base64 secret value of ``length`` random bytes."""
        return {"success": True, "value": generate_random_secret(length)}

    # ── Injection ──────────────────────────────────────────────────

    @vault_tool
    def scan_placeholders(self, content: str) -> dict:
        """
        Find ${NAME} placeholders in configuration text.

        Also flags lines that look like hardcoded credentials which could be
        moved into the vault.
        """
        return {
            "success": True,
            "placeholders": scan(content),
            "potential_secrets": [
                {"key": p.key, "line": p.line} for p in find_potential_secrets(content)
            ],
        }

    @vault_tool
    def validate_placeholders(self, owner_id: str, content: str) -> dict:
        """Check that every placeholder in the text has a stored secret."""
        missing = self.vault.missing_placeholders(owner_id, content)
        return {"success": True, "valid": not missing, "missing": missing}

    @vault_tool
    def preview_injection(self, owner_id: str, content: str) -> dict:
        """
        Render configuration text with secrets injected.

        The rendered text contains plaintext secrets. It is returned to the
        caller only and never stored.
        """
        report = self.vault.render(owner_id, content)
        return {
            "success": True,
            "original": report.original_text,
            "rendered": report.rendered_text,
            "placeholders_found": report.placeholders_found,
            "missing": report.missing,
            "valid": report.valid,
        }

    # ── Templates ──────────────────────────────────────────────────

    @vault_tool
    def save_template(
        self,
        owner_id: str,
        name: str,
        values: dict[str, str],
        description: str | None = None,
    ) -> dict:
        """Create or replace a named secret template."""
        template = self.templates.save_template(owner_id, name, values, description)
        return {"success": True, "name": template.name, "keys": sorted(template.values)}

    @vault_tool
    def list_templates(self, owner_id: str) -> dict:
        """List secret templates (names, descriptions and keys)."""
        templates = self.templates.list_templates(owner_id)
        return {
            "success": True,
            "templates": [
                {
                    "name": t.name,
                    "description": t.description,
                    "keys": sorted(t.values),
                    "updated_at": t.updated_at,
                }
                for t in templates
            ],
            "count": len(templates),
        }

    @vault_tool
    def delete_template(self, owner_id: str, name: str) -> dict:
        """Delete a secret template."""
        self.templates.delete_template(owner_id, name)
        return {"success": True, "name": name}

    @vault_tool
    def apply_template(self, owner_id: str, name: str) -> dict:
        """Store every key/value pair of a template in the owner's vault."""
        result = self.templates.apply(name, owner_id)
        return {
            "success": True,
            "name": result.template_name,
            "applied_keys": result.applied_keys,
        }


def create_server(settings: VaultSettings, tools: VaultTools | None = None) -> FastMCP:
    """Build the MCP server with every vault tool registered."""
    if settings.mcp_auth_disabled:
        auth_provider = None
    elif settings.mcp_api_key:
        auth_provider = ApiKeyVerifier(settings.mcp_api_key.get_secret_value())
    else:
        raise ValidationError(
            "VAULT_MCP_API_KEY must be set for authentication. "
            "Set MCP_AUTH_DISABLED=true to explicitly disable auth."
        )

    tools = tools or VaultTools.from_settings(settings)
    mcp = FastMCP("Infra Vault", auth=auth_provider)
    for name in TOOL_NAMES:
        mcp.tool(getattr(tools, name))
    return mcp
