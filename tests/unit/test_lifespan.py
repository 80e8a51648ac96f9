from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from mailrelay.config import ConfigurationError, Settings
from mailrelay.main import app
from mailrelay.services.email_service import EmailService
from mailrelay.services.permission_tree import IdolPermissionTreeProvider, StaticPermissionTreeProvider


def test_startup_builds_email_service(test_settings):
    with patch("mailrelay.main.get_settings", return_value=test_settings):
        with TestClient(app):
            service = app.state.email_service

            assert isinstance(service, EmailService)
            assert isinstance(service.tree_provider, IdolPermissionTreeProvider)
            assert service.idol is not None
            assert service.emails_index == "emails"
            assert test_settings.upload_path().is_dir()


def test_startup_with_file_tree_and_no_search(tmp_path):
    settings = Settings(
        _env_file=None,
        MAILJET_API_KEY="mj-key",
        MAILJET_SECRET_KEY="mj-secret",
        IDOL_API_KEY=None,
        PERMISSION_TREE_SOURCE="file",
        PERMISSION_TREE_FILE=str(tmp_path / "tree.json"),
        UPLOAD_DIR=str(tmp_path / "uploads"),
    )

    with patch("mailrelay.main.get_settings", return_value=settings):
        with TestClient(app):
            service = app.state.email_service

            assert isinstance(service.tree_provider, StaticPermissionTreeProvider)
            assert service.idol is None


def test_startup_fails_without_credentials(tmp_path):
    settings = Settings(
        _env_file=None,
        MAILJET_API_KEY=None,
        MAILJET_SECRET_KEY=None,
        IDOL_API_KEY="idol-key",
        UPLOAD_DIR=str(tmp_path),
    )

    with patch("mailrelay.main.get_settings", return_value=settings):
        with pytest.raises(ConfigurationError):
            with TestClient(app):
                pass
