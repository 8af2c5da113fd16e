import pytest

from infra_vault.crypto import MIN_PBKDF2_ITERATIONS, KeyDeriver
from infra_vault.database import SecretsDatabase
from infra_vault.manager import SecretsVault
from infra_vault.templates import TemplateApplier

TEST_MASTER_SECRET = "test-master-secret"


@pytest.fixture(autouse=True)
def clean_vault_env(monkeypatch):
    """Keep the developer's shell environment out of config tests."""
    for name in (
        "VAULT_MASTER_SECRET",
        "VAULT_KDF_ITERATIONS",
        "VAULT_DATABASE_PATH",
        "VAULT_LOG_LEVEL",
        "VAULT_MCP_API_KEY",
        "MCP_AUTH_DISABLED",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def deriver():
    # Minimum iteration count keeps the suite fast
    return KeyDeriver(TEST_MASTER_SECRET, iterations=MIN_PBKDF2_ITERATIONS)


@pytest.fixture
def db(tmp_path):
    return SecretsDatabase(tmp_path / "vault.db")


@pytest.fixture
def vault(db, deriver):
    return SecretsVault(db, deriver)


@pytest.fixture
def applier(vault, db):
    return TemplateApplier(vault, db)
