"""Envelope codec: encrypted secret records to and from storable text."""

import base64
import binascii
from collections.abc import Mapping
from dataclasses import dataclass

from .crypto import NONCE_SIZE, SALT_SIZE, TAG_SIZE
from .errors import FormatError

_BINARY_FIELDS = ("ciphertext", "iv", "auth_tag", "salt")
_TEXT_FIELDS = ("owner_id", "key", "created_at", "updated_at")
_EXPECTED_SIZES = {"iv": NONCE_SIZE, "auth_tag": TAG_SIZE, "salt": SALT_SIZE}


@dataclass(frozen=True)
class SecretEnvelope:
    """An encrypted secret plus everything needed to decrypt it."""

    owner_id: str
    key: str
    ciphertext: bytes
    iv: bytes
    auth_tag: bytes
    salt: bytes
    created_at: str
    updated_at: str
    description: str | None = None

    def __repr__(self) -> str:
        return (
            f"SecretEnvelope(owner_id={self.owner_id!r}, key={self.key!r}, "
            f"updated_at={self.updated_at!r})"
        )


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def encode(envelope: SecretEnvelope) -> dict[str, str | None]:
    """Encode an envelope into a flat record of text fields."""
    record: dict[str, str | None] = {
        name: getattr(envelope, name) for name in _TEXT_FIELDS
    }
    for name in _BINARY_FIELDS:
        record[name] = _b64encode(getattr(envelope, name))
    record["description"] = envelope.description
    return record


def decode(record: Mapping) -> SecretEnvelope:
    """Decode a stored record back into an envelope.

    Raises:
        FormatError: If a field is missing, is not valid base64, or decodes
            to the wrong length.
    """
    if not isinstance(record, Mapping):
        raise FormatError("Envelope record must be a mapping")
    key = record.get("key")
    label = f"'{key}'" if key else "record"

    fields = {}
    for name in _TEXT_FIELDS:
        value = record.get(name)
        if not isinstance(value, str) or not value:
            raise FormatError(f"Envelope {label} is missing field '{name}'")
        fields[name] = value

    for name in _BINARY_FIELDS:
        value = record.get(name)
        if not isinstance(value, str):
            raise FormatError(f"Envelope {label} is missing field '{name}'")
        try:
            raw = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            raise FormatError(
                f"Envelope {label} field '{name}' is not valid base64"
            ) from None
        expected = _EXPECTED_SIZES.get(name)
        if expected is not None and len(raw) != expected:
            raise FormatError(
                f"Envelope {label} field '{name}' has length {len(raw)}, "
                f"expected {expected}"
            )
        fields[name] = raw

    description = record.get("description")
    if description is not None and not isinstance(description, str):
        raise FormatError(f"Envelope {label} has a non-text description")
    return SecretEnvelope(description=description, **fields)
