"""Tests for infra_vault.manager module."""

import base64

import pytest

from infra_vault.crypto import MIN_PBKDF2_ITERATIONS, KeyDeriver
from infra_vault.errors import (
    FormatError,
    IntegrityError,
    SecretNotFound,
    TamperError,
    ValidationError,
)
from infra_vault.manager import SecretsVault


def _flip_first_byte(encoded: str) -> str:
    raw = bytearray(base64.b64decode(encoded))
    raw[0] ^= 0x01
    return base64.b64encode(bytes(raw)).decode("ascii")


class TestStoreRetrieve:
    def test_roundtrip(self, vault):
        vault.store("user-1", "API_KEY", "sk_live_abc123")
        assert vault.retrieve("user-1", "API_KEY") == "sk_live_abc123"

    def test_store_returns_normalized_key(self, vault):
        assert vault.store("user-1", "my-secret-key", "v") == "MY_SECRET_KEY"
        assert vault.retrieve("user-1", "MY_SECRET_KEY") == "v"

    def test_retrieve_normalizes_key(self, vault):
        vault.store("user-1", "db.password", "hunter2")
        assert vault.retrieve("user-1", "db.password") == "hunter2"

    def test_unicode_value(self, vault):
        vault.store("user-1", "GREETING", "héllo wörld ✓")
        assert vault.retrieve("user-1", "GREETING") == "héllo wörld ✓"

    def test_store_overwrites(self, vault):
        vault.store("user-1", "API_KEY", "old")
        vault.store("user-1", "API_KEY", "new")
        assert vault.retrieve("user-1", "API_KEY") == "new"

    def test_overwrite_keeps_created_at(self, vault):
        vault.store("user-1", "API_KEY", "old")
        first = vault.list_keys("user-1")[0]
        vault.store("user-1", "API_KEY", "new")
        second = vault.list_keys("user-1")[0]
        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at

    def test_reencryption_uses_fresh_salt_and_iv(self, vault, db):
        vault.store("user-1", "API_KEY", "same")
        first = db.get_envelope("user-1", "API_KEY")
        vault.store("user-1", "API_KEY", "same")
        second = db.get_envelope("user-1", "API_KEY")
        assert first["salt"] != second["salt"]
        assert first["iv"] != second["iv"]
        assert first["ciphertext"] != second["ciphertext"]

    def test_value_not_stored_in_plaintext(self, vault, db):
        vault.store("user-1", "API_KEY", "plaintext-marker")
        record = db.get_envelope("user-1", "API_KEY")
        assert "plaintext-marker" not in str(record)

    def test_description_stored(self, vault):
        vault.store("user-1", "API_KEY", "v", description="Stripe live key")
        assert vault.list_keys("user-1")[0].description == "Stripe live key"

    def test_retrieve_missing(self, vault):
        with pytest.raises(SecretNotFound) as excinfo:
            vault.retrieve("user-1", "NOPE")
        assert excinfo.value.key == "NOPE"

    @pytest.mark.parametrize("key", ["", "---", "ÄÖÜ"])
    def test_unusable_key_rejected(self, vault, key):
        with pytest.raises(ValidationError):
            vault.store("user-1", key, "v")

    def test_empty_value_rejected(self, vault):
        with pytest.raises(ValidationError):
            vault.store("user-1", "API_KEY", "")

    def test_missing_owner_rejected(self, vault):
        with pytest.raises(ValidationError):
            vault.store("", "API_KEY", "v")
        with pytest.raises(ValidationError):
            vault.retrieve("", "API_KEY")

    def test_wrong_master_secret(self, vault, db):
        vault.store("user-1", "API_KEY", "v")
        other = SecretsVault(
            db, KeyDeriver("another-master", iterations=MIN_PBKDF2_ITERATIONS)
        )
        with pytest.raises(TamperError):
            other.retrieve("user-1", "API_KEY")


class TestOwnerIsolation:
    def test_owners_do_not_see_each_other(self, vault):
        vault.store("alice", "API_KEY", "alice-value")
        vault.store("bob", "API_KEY", "bob-value")
        assert vault.retrieve("alice", "API_KEY") == "alice-value"
        assert vault.retrieve("bob", "API_KEY") == "bob-value"

    def test_other_owner_gets_not_found(self, vault):
        vault.store("alice", "ONLY_ALICE", "v")
        with pytest.raises(SecretNotFound):
            vault.retrieve("bob", "ONLY_ALICE")
        assert vault.list_keys("bob") == []

    def test_delete_is_scoped(self, vault):
        vault.store("alice", "API_KEY", "a")
        vault.store("bob", "API_KEY", "b")
        vault.delete("alice", "API_KEY")
        assert vault.retrieve("bob", "API_KEY") == "b"


class TestIntegrity:
    @pytest.mark.parametrize("field", ["ciphertext", "iv", "auth_tag", "salt"])
    def test_tampered_field_raises(self, vault, db, field):
        vault.store("user-1", "API_KEY", "secret-value")
        record = db.get_envelope("user-1", "API_KEY")
        record[field] = _flip_first_byte(record[field])
        db.upsert_envelope("user-1", "API_KEY", record)

        with pytest.raises(TamperError):
            vault.retrieve("user-1", "API_KEY")

    def test_malformed_record_raises_format_error(self, vault, db):
        vault.store("user-1", "API_KEY", "secret-value")
        record = db.get_envelope("user-1", "API_KEY")
        record["iv"] = "not base64!!"
        db.upsert_envelope("user-1", "API_KEY", record)

        with pytest.raises(FormatError):
            vault.retrieve("user-1", "API_KEY")

    def test_envelope_moved_to_other_key_fails(self, vault, db):
        vault.store("user-1", "KEY_A", "value-a")
        vault.store("user-1", "KEY_B", "value-b")
        db.upsert_envelope("user-1", "KEY_B", db.get_envelope("user-1", "KEY_A"))

        with pytest.raises(IntegrityError):
            vault.retrieve("user-1", "KEY_B")

    def test_envelope_moved_to_other_owner_fails(self, vault, db):
        vault.store("alice", "API_KEY", "alice-value")
        db.upsert_envelope("mallory", "API_KEY", db.get_envelope("alice", "API_KEY"))

        with pytest.raises(IntegrityError):
            vault.retrieve("mallory", "API_KEY")

    def test_integrity_error_does_not_echo_value(self, vault, db):
        vault.store("user-1", "API_KEY", "secret-value")
        record = db.get_envelope("user-1", "API_KEY")
        record["ciphertext"] = _flip_first_byte(record["ciphertext"])
        db.upsert_envelope("user-1", "API_KEY", record)

        with pytest.raises(IntegrityError) as excinfo:
            vault.retrieve("user-1", "API_KEY")
        assert "secret-value" not in str(excinfo.value)


class TestListDeleteExists:
    def test_list_sorted_without_values(self, vault):
        vault.store("user-1", "ZETA", "z")
        vault.store("user-1", "ALPHA", "a")
        infos = vault.list_keys("user-1")
        assert [info.key for info in infos] == ["ALPHA", "ZETA"]
        assert not any(hasattr(info, "value") for info in infos)

    def test_exists(self, vault):
        vault.store("user-1", "API_KEY", "v")
        assert vault.exists("user-1", "api-key")
        assert not vault.exists("user-1", "OTHER")

    def test_delete(self, vault):
        vault.store("user-1", "API_KEY", "v")
        vault.delete("user-1", "API_KEY")
        assert not vault.exists("user-1", "API_KEY")

    def test_delete_absent_is_noop(self, vault):
        vault.delete("user-1", "NEVER_STORED")
        vault.delete("user-1", "NEVER_STORED")


class TestExportImport:
    def test_export_excludes_values(self, vault):
        vault.store("user-1", "API_KEY", "sk_live_abc123", description="Stripe")
        exported = vault.export("user-1")
        assert exported == [{"key": "API_KEY", "description": "Stripe"}]
        assert "sk_live_abc123" not in str(exported)

    def test_import_stores_entries(self, vault):
        result = vault.import_secrets(
            "user-1",
            [
                {"key": "db-password", "value": "hunter2"},
                {"key": "API_KEY", "value": "abc", "description": "Stripe"},
            ],
        )
        assert result.stored == ["DB_PASSWORD", "API_KEY"]
        assert vault.retrieve("user-1", "DB_PASSWORD") == "hunter2"

    def test_import_skips_existing_without_overwrite(self, vault):
        vault.store("user-1", "API_KEY", "original")
        result = vault.import_secrets("user-1", [{"key": "API_KEY", "value": "new"}])
        assert result.skipped == ["API_KEY"]
        assert vault.retrieve("user-1", "API_KEY") == "original"

    def test_import_overwrite(self, vault):
        vault.store("user-1", "API_KEY", "original")
        result = vault.import_secrets(
            "user-1", [{"key": "API_KEY", "value": "new"}], overwrite=True
        )
        assert result.stored == ["API_KEY"]
        assert vault.retrieve("user-1", "API_KEY") == "new"

    def test_import_twice_is_idempotent(self, vault):
        entries = [{"key": "A", "value": "1"}, {"key": "B", "value": "2"}]
        vault.import_secrets("user-1", entries)
        second = vault.import_secrets("user-1", entries)
        assert second.stored == []
        assert second.skipped == ["A", "B"]
        assert [info.key for info in vault.list_keys("user-1")] == ["A", "B"]

    def test_import_records_invalid_entries(self, vault):
        result = vault.import_secrets(
            "user-1",
            [
                {"key": "", "value": "x"},
                {"key": "EMPTY_VALUE", "value": ""},
                {"key": "GOOD", "value": "ok"},
            ],
        )
        assert result.stored == ["GOOD"]
        assert set(result.failed) == {"", "EMPTY_VALUE"}

    def test_import_non_string_key_does_not_stop_batch(self, vault):
        result = vault.import_secrets(
            "user-1",
            [
                {"key": 5, "value": "x"},
                {"value": "no key"},
                "not-a-mapping",
                {"key": "GOOD", "value": "ok"},
            ],
        )
        assert result.stored == ["GOOD"]
        assert set(result.failed) == {"#0", "#1", "#2"}
        assert vault.retrieve("user-1", "GOOD") == "ok"

    @pytest.mark.parametrize("key", [5, None, ["A"]])
    def test_non_string_key_rejected(self, vault, key):
        with pytest.raises(ValidationError):
            vault.store("user-1", key, "v")


class TestInjection:
    def test_render_substitutes_stored_secrets(self, vault):
        vault.store("user-1", "DB_PASSWORD", "hunter2")
        report = vault.render("user-1", "password: ${DB_PASSWORD}\nuser: ${DB_USER}")
        assert report.rendered_text == "password: hunter2\nuser: ${DB_USER}"
        assert report.placeholders_found == ["DB_PASSWORD", "DB_USER"]
        assert report.missing == ["DB_USER"]
        assert not report.valid

    def test_render_does_not_normalize_placeholders(self, vault):
        vault.store("user-1", "DB_PASSWORD", "hunter2")
        report = vault.render("user-1", "${db_password}")
        assert report.rendered_text == "${db_password}"
        assert report.missing == ["db_password"]

    def test_render_is_owner_scoped(self, vault):
        vault.store("alice", "TOKEN", "alice-token")
        report = vault.render("bob", "${TOKEN}")
        assert report.missing == ["TOKEN"]

    def test_render_propagates_integrity_errors(self, vault, db):
        vault.store("user-1", "API_KEY", "v")
        record = db.get_envelope("user-1", "API_KEY")
        record["auth_tag"] = _flip_first_byte(record["auth_tag"])
        db.upsert_envelope("user-1", "API_KEY", record)

        with pytest.raises(IntegrityError):
            vault.render("user-1", "key=${API_KEY}")

    def test_missing_placeholders(self, vault):
        vault.store("user-1", "PRESENT", "v")
        assert vault.missing_placeholders("user-1", "${PRESENT} ${ABSENT}") == ["ABSENT"]

    def test_missing_placeholders_skips_decryption(self, vault, db):
        vault.store("user-1", "API_KEY", "v")
        record = db.get_envelope("user-1", "API_KEY")
        record["ciphertext"] = _flip_first_byte(record["ciphertext"])
        db.upsert_envelope("user-1", "API_KEY", record)

        assert vault.missing_placeholders("user-1", "${API_KEY}") == []
