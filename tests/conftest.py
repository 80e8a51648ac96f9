import pytest

from mailrelay.config import Settings
from mailrelay.models.domain.email_domain import AttachmentFile


class FakeTreeProvider:
    def __init__(self, tree: dict[str, set[str]] | None = None, error: Exception | None = None):
        self.tree = tree or {}
        self.error = error
        self.calls = 0

    async def fetch(self) -> dict[str, set[str]]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return {group: set(members) for group, members in self.tree.items()}


@pytest.fixture
def permission_tree():
    return {
        "teamA": {"alice@x.com", "bob@x.com"},
        "teamC": {"erin@x.com"},
    }


@pytest.fixture
def tree_provider(permission_tree):
    return FakeTreeProvider(permission_tree)


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        MAILJET_API_KEY="mj-key",
        MAILJET_SECRET_KEY="mj-secret",
        IDOL_API_KEY="idol-key",
        APP_EMAILS_IDOL_INDEX="emails",
        UPLOAD_DIR=str(tmp_path / "uploads"),
    )


@pytest.fixture
def make_attachments(tmp_path):
    def _make(*names: str) -> list[AttachmentFile]:
        attachments = []
        for index, name in enumerate(names):
            path = tmp_path / f"staged-{index}"
            path.write_bytes(f"contents of {name}".encode())
            attachments.append(AttachmentFile(original_name=name, path=path))
        return attachments

    return _make


@pytest.fixture
def fake_tree_provider():
    return FakeTreeProvider
