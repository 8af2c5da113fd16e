"""Secrets vault: business logic combining crypto, codec and persistence.

This module ties together key derivation, the envelope cipher and the
persistence port to provide the secrets API the rest of the dashboard calls.
Every operation takes the owner explicitly; the vault never infers identity.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

from loguru import logger

from . import envelope as codec
from .crypto import KeyDeriver, decrypt, encrypt, generate_salt
from .envelope import SecretEnvelope
from .errors import IntegrityError, SecretNotFound, ValidationError
from .injection import InjectionReport, preview, scan
from .keys import is_valid_key, normalize_key
from .protocol import PersistencePort, SecretInfo


@dataclass
class ImportResult:
    stored: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _associated_data(owner_id: str, key: str) -> bytes:
    # Envelopes only verify under their own (owner_id, key).
    return f"{owner_id}\x00{key}".encode("utf-8")


class SecretsVault:
    """Encrypted secrets store scoped per owner.

    Security model:
        - Each secret gets a fresh random salt and nonce on every store
        - The per-secret key is PBKDF2(master secret, salt)
        - Values are sealed with AES-256-GCM, bound to (owner_id, key)
        - Listing and export expose keys and metadata only

    To decrypt a secret you need:
        1. The stored envelope for (owner_id, key)
        2. The operator-configured master secret
    """

    def __init__(self, db: PersistencePort, deriver: KeyDeriver):
        self._db = db
        self._deriver = deriver

    # ── Validation ─────────────────────────────────────────────────

    @staticmethod
    def _check_owner(owner_id: str) -> None:
        if not owner_id:
            raise ValidationError("owner_id is required")

    def _normalize(self, key: str) -> str:
        if not isinstance(key, str):
            raise ValidationError("Secret key must be a string")
        if not key:
            raise ValidationError("Secret key is required")
        normalized = normalize_key(key)
        if not normalized:
            raise ValidationError(f"Secret key '{key}' has no usable characters")
        return normalized

    def validate_entry(self, key: str, value: str) -> str:
        """Check a key/value pair without storing it. Returns the normalized key."""
        normalized = self._normalize(key)
        if not isinstance(value, str) or not value:
            raise ValidationError(f"Value for secret '{normalized}' is required")
        return normalized

    # ── Secret operations ──────────────────────────────────────────

    def store(
        self, owner_id: str, key: str, value: str, description: str | None = None
    ) -> str:
        """Encrypt and store a secret, replacing any existing value.

        Returns:
            The normalized key the secret was stored under.
        """
        self._check_owner(owner_id)
        key = self.validate_entry(key, value)

        salt = generate_salt()
        derived = self._deriver.derive(salt)
        ciphertext, iv, auth_tag = encrypt(
            derived, value.encode("utf-8"), _associated_data(owner_id, key)
        )

        now = _now()
        record = codec.encode(
            SecretEnvelope(
                owner_id=owner_id,
                key=key,
                ciphertext=ciphertext,
                iv=iv,
                auth_tag=auth_tag,
                salt=salt,
                description=description,
                created_at=now,
                updated_at=now,
            )
        )
        self._db.upsert_envelope(owner_id, key, record)
        logger.debug(f"Vault store: owner={owner_id} key={key}")
        return key

    def retrieve(self, owner_id: str, key: str) -> str:
        """Decrypt and return a secret value.

        Raises:
            SecretNotFound: If no secret is stored under this key.
            IntegrityError: If the envelope is corrupt or fails verification.
        """
        self._check_owner(owner_id)
        key = self._normalize(key)

        record = self._db.get_envelope(owner_id, key)
        if record is None:
            raise SecretNotFound(key)

        try:
            envelope = codec.decode(record)
            derived = self._deriver.derive(envelope.salt)
            plaintext = decrypt(
                derived,
                envelope.ciphertext,
                envelope.iv,
                envelope.auth_tag,
                _associated_data(owner_id, key),
            )
            return plaintext.decode("utf-8")
        except IntegrityError as exc:
            logger.error(
                f"Vault integrity failure: owner={owner_id} key={key} "
                f"({type(exc).__name__})"
            )
            raise
        except UnicodeDecodeError:
            logger.error(f"Vault integrity failure: owner={owner_id} key={key}")
            raise IntegrityError(f"Secret '{key}' did not decrypt to text") from None

    def exists(self, owner_id: str, key: str) -> bool:
        self._check_owner(owner_id)
        return self._db.get_envelope(owner_id, self._normalize(key)) is not None

    def list_keys(self, owner_id: str) -> list[SecretInfo]:
        """List secret keys and metadata (never values), ordered by key."""
        self._check_owner(owner_id)
        return sorted(self._db.list_envelopes(owner_id), key=lambda info: info.key)

    def delete(self, owner_id: str, key: str) -> None:
        """Delete a secret. Deleting an absent key is not an error."""
        self._check_owner(owner_id)
        key = self._normalize(key)
        if self._db.delete_envelope(owner_id, key):
            logger.info(f"Vault delete: owner={owner_id} key={key}")

    def export(self, owner_id: str) -> list[dict]:
        """Export the key inventory for backup. Values are never included."""
        return [
            {"key": info.key, "description": info.description}
            for info in self.list_keys(owner_id)
        ]

    def import_secrets(
        self,
        owner_id: str,
        entries: Iterable[Mapping[str, str]],
        overwrite: bool = False,
    ) -> ImportResult:
        """Store many secrets at once.

        Entries whose key already exists are skipped unless ``overwrite`` is
        set. An invalid entry is recorded in ``failed`` and does not stop the
        rest of the batch.
        """
        self._check_owner(owner_id)
        result = ImportResult()
        for index, entry in enumerate(entries):
            if not isinstance(entry, Mapping):
                result.failed[f"#{index}"] = "Entry must be a mapping with key and value"
                continue
            raw_key = entry.get("key")
            label = raw_key if isinstance(raw_key, str) else f"#{index}"
            try:
                key = self.validate_entry(raw_key, entry.get("value"))
            except ValidationError as exc:
                result.failed[label] = str(exc)
                continue
            if not overwrite and self._db.get_envelope(owner_id, key) is not None:
                result.skipped.append(key)
                continue
            self.store(owner_id, key, entry["value"], entry.get("description"))
            result.stored.append(key)
        logger.info(
            f"Vault import: owner={owner_id} stored={len(result.stored)} "
            f"skipped={len(result.skipped)} failed={len(result.failed)}"
        )
        return result

    # ── Injection ──────────────────────────────────────────────────

    def resolver(self, owner_id: str) -> Callable[[str], str | None]:
        """Build a placeholder resolver backed by this owner's secrets.

        Only names already in normalized form resolve; anything else is
        reported missing. Integrity errors are raised, not treated as absent.
        """
        self._check_owner(owner_id)

        def resolve(name: str) -> str | None:
            if not is_valid_key(name):
                return None
            try:
                return self.retrieve(owner_id, name)
            except SecretNotFound:
                return None

        return resolve

    def render(self, owner_id: str, text: str) -> InjectionReport:
        """Inject this owner's secrets into configuration text.

        The rendered text is returned to the caller only; nothing is stored.
        """
        report = preview(text, self.resolver(owner_id))
        logger.debug(
            f"Vault render: owner={owner_id} "
            f"placeholders={len(report.placeholders_found)} missing={report.missing}"
        )
        return report

    def missing_placeholders(self, owner_id: str, text: str) -> list[str]:
        """Return placeholders in text with no stored secret, without decrypting."""
        self._check_owner(owner_id)
        stored = {info.key for info in self._db.list_envelopes(owner_id)}
        return [name for name in scan(text) if name not in stored]
