"""Tests for settings validation."""

from __future__ import annotations

import pytest

from hub.config import Settings


class TestRuntimeSecurity:
    def test_debug_skips_validation(self) -> None:
        Settings(debug=True, github_api_base="http://localhost:9999").validate_runtime_security()

    def test_production_requires_trusted_hosts(self) -> None:
        settings = Settings(debug=False, trusted_hosts=[])
        with pytest.raises(ValueError, match="TRUSTED_HOSTS"):
            settings.validate_runtime_security()

    def test_production_requires_https_api_base(self) -> None:
        settings = Settings(
            debug=False, trusted_hosts=["hub.example.com"], github_api_base="http://api.local"
        )
        with pytest.raises(ValueError, match="GITHUB_API_BASE"):
            settings.validate_runtime_security()

    def test_secure_production_settings_pass(self) -> None:
        Settings(debug=False, trusted_hosts=["hub.example.com"]).validate_runtime_security()


class TestDefaults:
    def test_sync_defaults(self) -> None:
        settings = Settings()
        assert settings.sync_timeout_seconds == 300.0
        assert settings.sync_max_files_limit == 5000
        assert settings.github_api_base == "https://api.github.com"
        assert settings.local_sync_max_files == 2000
        assert settings.local_sync_max_file_bytes == 1_000_000

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SYNC_TIMEOUT_SECONDS", "12.5")
        monkeypatch.setenv("TRUSTED_HOSTS", '["a.example.com"]')
        settings = Settings()
        assert settings.sync_timeout_seconds == 12.5
        assert settings.trusted_hosts == ["a.example.com"]

    def test_rejects_non_positive_timeout(self) -> None:
        with pytest.raises(ValueError):
            Settings(sync_timeout_seconds=0)
