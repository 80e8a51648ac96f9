"""
Recipient authorization.
Parses the caller's requested recipient tree and intersects it with the
trusted permission tree, group by group.
"""

import json

from pydantic import TypeAdapter, ValidationError

from mailrelay.models.domain.email_domain import PermissionTree, RequestedRecipients

_requested_adapter = TypeAdapter(dict[str, list[str]])


class RecipientParseError(Exception):
    """The `to` field is not a JSON object of group -> list of members."""


def parse_requested_recipients(raw: str | None) -> RequestedRecipients:
    """
    Parse the JSON-encoded `to` field.

    Args:
        raw: JSON text such as '{"storeA": ["a@x.com"]}'

    Returns:
        RequestedRecipients: group -> requested members, in document order

    Raises:
        RecipientParseError: on invalid JSON or on any other shape
    """
    if raw is None:
        raise RecipientParseError("field is missing")

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise RecipientParseError(f"Can not parse JSON: {e}") from e

    try:
        # strict: no coercion of numbers or nulls into addresses
        return _requested_adapter.validate_python(data, strict=True)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "<root>"
        raise RecipientParseError(
            f"expected an object of group -> list of addresses ({location}: {first['msg']})"
        ) from e


def filter_recipients(requested: RequestedRecipients, tree: PermissionTree) -> list[str]:
    """
    Keep only the requested members authorized under the same group.

    Unknown groups are skipped whole. Duplicates in the request are kept
    and order follows the request.
    """
    recipients = []
    for group, members in requested.items():
        authorized = tree.get(group)
        if authorized is None:
            continue
        for member in members:
            if member in authorized:
                recipients.append(member)
    return recipients
