"""Tests for the command-line interface."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from cryptography.fernet import Fernet
from typer.testing import CliRunner

from kv_oauth import __version__
from kv_oauth.cli import app

if TYPE_CHECKING:
    from pathlib import Path

runner = CliRunner()


class TestVersion:
    """Tests for version output."""

    def test_version_command(self) -> None:
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert f"kv-oauth version {__version__}" in result.output

    def test_version_flag(self) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"kv-oauth version {__version__}" in result.output


class TestClear:
    """Tests for the clear command."""

    def test_clear_file_store(self, tmp_path: Path) -> None:
        """Test clearing an empty file store."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text(
            "store_backend: file\n"
            f"store_path: {tmp_path / 'store.enc'}\n"
            f"store_encryption_key: {Fernet.generate_key().decode()}\n"
        )

        result = runner.invoke(app, ["clear", "--config", str(config_path)])

        assert result.exit_code == 0
        assert "Deleted 0 session records" in result.output

    def test_invalid_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test configuration errors exit with status 1."""
        monkeypatch.setenv("KV_OAUTH_STORE_BACKEND", "redis")
        monkeypatch.delenv("KV_OAUTH_REDIS_URL", raising=False)

        result = runner.invoke(app, ["clear"])

        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestServe:
    """Tests for the serve command."""

    def test_missing_provider(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test serving without provider settings fails cleanly."""
        monkeypatch.delenv("KV_OAUTH_OAUTH_AUTHORIZATION_URL", raising=False)
        monkeypatch.delenv("KV_OAUTH_OAUTH_PROVIDER", raising=False)

        result = runner.invoke(app, ["serve"])

        assert result.exit_code == 1
        assert "KV_OAUTH_OAUTH_AUTHORIZATION_URL" in result.output
