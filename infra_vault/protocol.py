"""
Persistence Protocol Definitions

This module defines the storage contracts the vault depends on. The vault
never talks to a database client directly; any concrete binding (SQLite,
Postgres, a remote API) implements these interfaces.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class SecretInfo:
    """
    Metadata about a stored secret. Never carries the value.

    Attributes:
        key: The normalized secret key.
        description: Optional human-readable description.
        created_at: ISO-8601 timestamp of first store.
        updated_at: ISO-8601 timestamp of the latest re-encryption.
    """

    key: str
    description: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class SecretTemplate:
    """
    A named, reusable set of placeholder → default value pairs.

    Attributes:
        owner_id: Owner the template belongs to.
        name: Template name, unique per owner.
        values: Mapping of secret key to the value stored when applied.
        description: Optional human-readable description.
    """

    owner_id: str
    name: str
    values: dict[str, str] = field(default_factory=dict)
    description: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def __repr__(self) -> str:
        return (
            f"SecretTemplate(owner_id={self.owner_id!r}, name={self.name!r}, "
            f"keys={sorted(self.values)!r})"
        )


class PersistencePort(ABC):
    """
    Storage interface for encoded secret envelopes.

    Records are flat mappings of text fields as produced by
    ``infra_vault.envelope.encode``. Implementations must make
    ``upsert_envelope`` a single atomic write keyed on ``(owner_id, key)``.
    Storage errors are raised as-is; the vault does not retry.
    """

    @abstractmethod
    def upsert_envelope(self, owner_id: str, key: str, record: dict) -> None:
        """Insert or replace the envelope for ``(owner_id, key)``.

        ``created_at`` of an existing row must be preserved.
        """
        ...

    @abstractmethod
    def get_envelope(self, owner_id: str, key: str) -> dict | None:
        """Return the stored record, or None if there is no such row."""
        ...

    @abstractmethod
    def list_envelopes(self, owner_id: str) -> list[SecretInfo]:
        """Return metadata for every envelope of an owner, ordered by key."""
        ...

    @abstractmethod
    def delete_envelope(self, owner_id: str, key: str) -> bool:
        """Remove an envelope. Returns True if a row was deleted."""
        ...


class TemplateRepository(ABC):
    """Storage interface for secret templates."""

    @abstractmethod
    def upsert_template(self, template: SecretTemplate) -> None:
        ...

    @abstractmethod
    def get_template(self, owner_id: str, name: str) -> SecretTemplate | None:
        ...

    @abstractmethod
    def list_templates(self, owner_id: str) -> list[SecretTemplate]:
        ...

    @abstractmethod
    def delete_template(self, owner_id: str, name: str) -> bool:
        ...
