import pytest

from casekeeper.config import StoreConfig, default_data_dir
from casekeeper.storage.local_store import DEFAULT_QUOTA_CHARS


def test_from_env_reads_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("CASEKEEPER_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("CASEKEEPER_PRIMARY_QUOTA", "2048")
    monkeypatch.setenv("CASEKEEPER_SECONDARY_MAX_BYTES", "not-a-number")

    config = StoreConfig.from_env()

    assert config.data_dir == tmp_path / "home"
    assert config.primary_quota_chars == 2048
    assert config.secondary_max_bytes == StoreConfig().secondary_max_bytes
    assert config.primary_path == tmp_path / "home" / "local_storage.json"
    assert config.secondary_path == tmp_path / "home" / "blob_store.sqlite"


def test_explicit_data_dir_wins(monkeypatch, tmp_path):
    monkeypatch.setenv("CASEKEEPER_HOME", str(tmp_path / "ignored"))
    config = StoreConfig.from_env(tmp_path / "chosen")
    assert config.data_dir == tmp_path / "chosen"
    assert config.primary_quota_chars == DEFAULT_QUOTA_CHARS
    assert config.attachment_max_bytes == 5 * 1024 * 1024
    assert config.max_files_per_case == 20


def test_default_data_dir_is_per_user():
    path = default_data_dir()
    assert path.name == "CaseKeeper"
    assert path.is_absolute()


@pytest.mark.parametrize(
    "features, expected",
    [
        ("", True),
        ("other", True),
        ("!blob-store", False),
        ("alpha, -blob_store", False),
        ("blob_store=off", False),
        ("blob_store=maybe", True),
        ("!blob_store, blob-store=on", True),
    ],
)
def test_features_switch_controls_secondary(monkeypatch, tmp_path, features, expected):
    monkeypatch.setenv("CK_FEATURES", features)
    assert StoreConfig.from_env(tmp_path).secondary_enabled is expected
