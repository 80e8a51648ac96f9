"""
Permission tree sources.

The permission tree maps a store (group key) to the addresses allowed to
receive mail under it. It is fetched fresh for every send.
"""

import asyncio
import json
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Protocol

from mailrelay.config import Settings
from mailrelay.infrastructure.observability.logging import get_logger
from mailrelay.models.domain.email_domain import PermissionTree
from mailrelay.services.idol_client import IdolClient

logger = get_logger(__name__)


class PermissionTreeError(Exception):
    """The permission tree could not be loaded."""


class PermissionTreeProvider(Protocol):
    async def fetch(self) -> PermissionTree: ...


def build_tree(entries: Mapping[str, Iterable[str]]) -> PermissionTree:
    return {str(group): {str(member) for member in members} for group, members in entries.items()}


class StaticPermissionTreeProvider:
    """Serve a fixed tree, optionally read from a JSON file on each fetch."""

    def __init__(self, tree: Mapping[str, Iterable[str]] | None = None, path: str | Path | None = None):
        if tree is None and path is None:
            raise ValueError("Either tree or path is required")
        self._tree = build_tree(tree) if tree is not None else None
        self._path = Path(path) if path is not None else None

    async def fetch(self) -> PermissionTree:
        if self._tree is not None:
            return {group: set(members) for group, members in self._tree.items()}

        try:
            text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
            data = json.loads(text)
        except (OSError, ValueError) as e:
            raise PermissionTreeError(f"Failed to read permission tree from {self._path}: {e}") from e

        if not isinstance(data, dict) or not all(isinstance(v, list) for v in data.values()):
            raise PermissionTreeError(f"Permission tree in {self._path} must map groups to lists")

        return build_tree(data)


class IdolPermissionTreeProvider:
    """
    Build the tree from a recipients index.

    Each indexed document contributes its member field under its group
    field. Either field may be multi-valued.
    """

    def __init__(
        self,
        client: IdolClient,
        index: str,
        group_field: str = "store",
        member_field: str = "email",
        max_results: int = 10000,
    ):
        self._client = client
        self.index = index
        self.group_field = group_field
        self.member_field = member_field
        self.max_results = max_results

    async def fetch(self) -> PermissionTree:
        data = await self._client.query_text_index(
            "*",
            self.index,
            print="fields",
            print_fields=f"{self.group_field},{self.member_field}",
            absolute_max_results=self.max_results,
        )

        tree: PermissionTree = {}
        for document in data.get("documents", []):
            groups = _field_values(document, self.group_field)
            members = _field_values(document, self.member_field)
            for group in groups:
                tree.setdefault(group, set()).update(members)

        logger.debug("Permission tree loaded", index=self.index, group_count=len(tree))
        return tree


def _field_values(document: dict[str, Any], name: str) -> list[str]:
    value = document.get(name)
    if value is None:
        return []
    if isinstance(value, list):
        return [str(item) for item in value]
    return [str(value)]


def create_permission_tree_provider(
    settings: Settings, idol_client: IdolClient | None
) -> PermissionTreeProvider:
    """Pick the provider named by PERMISSION_TREE_SOURCE."""
    if settings.PERMISSION_TREE_SOURCE == "file":
        return StaticPermissionTreeProvider(path=settings.PERMISSION_TREE_FILE)

    if idol_client is None:
        raise ValueError("IDOL client required for the 'idol' permission tree source")

    return IdolPermissionTreeProvider(
        idol_client,
        index=settings.RECIPIENTS_IDOL_INDEX,
        group_field=settings.RECIPIENTS_GROUP_FIELD,
        member_field=settings.RECIPIENTS_MEMBER_FIELD,
        max_results=settings.RECIPIENTS_MAX_RESULTS,
    )
