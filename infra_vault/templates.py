"""
Secret templates: named sets of key/value pairs applied to the vault in one go.

Templates can be saved per owner in a ``TemplateRepository`` or seeded from a
YAML file of the form::

    postgres:
      description: Credentials for the postgres stack
      values:
        POSTGRES_USER: app
        POSTGRES_PASSWORD: ${POSTGRES_PASSWORD_DEFAULT}
"""

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import yaml
from loguru import logger

from .errors import TemplateNotFound, ValidationError
from .manager import SecretsVault
from .protocol import SecretTemplate, TemplateRepository


@dataclass
class ApplyResult:
    template_name: str
    applied_keys: list[str] = field(default_factory=list)


class TemplateApplier:
    """
    Manages secret templates and expands them into vault entries.

    Applying a template validates every pair before writing any of them, so a
    bad template never leaves the vault half-populated.
    """

    def __init__(self, vault: SecretsVault, repository: TemplateRepository):
        self.vault = vault
        self.repository = repository

    def save_template(
        self,
        owner_id: str,
        name: str,
        values: Mapping[str, str],
        description: str | None = None,
    ) -> SecretTemplate:
        """Create or replace a template."""
        if not owner_id:
            raise ValidationError("owner_id is required")
        name = (name or "").strip()
        if not name:
            raise ValidationError("Template name is required")
        if not isinstance(values, Mapping):
            raise ValidationError(f"Template '{name}' values must be a mapping")
        for key, value in values.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise ValidationError(
                    f"Template '{name}' entry '{key}' must map a string key to a string value"
                )

        now = datetime.now(timezone.utc).isoformat()
        existing = self.repository.get_template(owner_id, name)
        template = SecretTemplate(
            owner_id=owner_id,
            name=name,
            values=dict(values),
            description=description,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self.repository.upsert_template(template)
        logger.info(f"Template saved: owner={owner_id} name={name}")
        return template

    def get_template(self, owner_id: str, name: str) -> SecretTemplate:
        template = self.repository.get_template(owner_id, name)
        if template is None:
            raise TemplateNotFound(name)
        return template

    def list_templates(self, owner_id: str) -> list[SecretTemplate]:
        return self.repository.list_templates(owner_id)

    def delete_template(self, owner_id: str, name: str) -> None:
        if self.repository.delete_template(owner_id, name):
            logger.info(f"Template deleted: owner={owner_id} name={name}")

    def import_file(self, owner_id: str, path: str | Path) -> list[SecretTemplate]:
        """Save every template defined in a YAML file for an owner."""
        return [
            self.save_template(owner_id, name, body["values"], body["description"])
            for name, body in load_templates_file(path).items()
        ]

    def apply(self, template_name: str, owner_id: str) -> ApplyResult:
        """Store every pair of a template in the owner's vault.

        Raises:
            TemplateNotFound: If the template does not exist. Nothing is written.
            ValidationError: If any pair is invalid. Nothing is written.
        """
        template = self.get_template(owner_id, template_name)

        pairs: dict[str, str] = {}
        for key, value in template.values.items():
            normalized = self.vault.validate_entry(key, value)
            if normalized in pairs:
                raise ValidationError(
                    f"Template '{template.name}' has more than one entry for '{normalized}'"
                )
            pairs[normalized] = value

        result = ApplyResult(template_name=template.name)
        for key, value in pairs.items():
            result.applied_keys.append(self.vault.store(owner_id, key, value))
        logger.info(
            f"Template applied: owner={owner_id} name={template.name} "
            f"keys={len(result.applied_keys)}"
        )
        return result


def _expand_env_vars(value: str) -> str:
    # Leave ${VAR} untouched when VAR is unset
    return re.sub(
        r"\$\{(\w+)\}",
        lambda m: os.environ.get(m.group(1), m.group(0)),
        value,
    )


def load_templates_file(path: str | Path) -> dict[str, dict]:
    """
    Load template definitions from a YAML file.

    Values of the form ``${VAR}`` are expanded from the environment so that
    defaults can be supplied without writing them into the file.

    Returns:
        Mapping of template name to ``{"description": ..., "values": {...}}``.

    Raises:
        ValidationError: If the document does not have the expected shape or
            a value is missing or not a scalar.
    """
    with open(path) as f:
        document = yaml.safe_load(f) or {}

    if not isinstance(document, dict):
        raise ValidationError(f"{path}: expected a mapping of template names")

    templates = {}
    for name, body in document.items():
        if not isinstance(body, dict) or not isinstance(body.get("values"), dict):
            raise ValidationError(f"{path}: template '{name}' needs a 'values' mapping")
        values = {}
        for key, value in body["values"].items():
            if value is None or isinstance(value, (dict, list)):
                raise ValidationError(
                    f"{path}: template '{name}' key '{key}' needs a scalar value"
                )
            values[str(key)] = _expand_env_vars(str(value))
        templates[str(name)] = {"description": body.get("description"), "values": values}
    return templates
