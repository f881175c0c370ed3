"""
Responsibility resolution - who is responsible for a task.

A task names up to four responsible people: the assignee, a secondary and
a tertiary responsible, and a subject owner. The subject owner column is
free text; it usually holds a user id but may be empty or a hand-typed
name. Unusable entries are dropped instead of failing the resolution.
"""
from dataclasses import dataclass
from typing import Any, Optional, Set

# Largest id a 64-bit integer column can hold
MAX_USER_ID = 2 ** 63 - 1


@dataclass(frozen=True)
class ParsedIdentity:
    """Result of parsing a loosely typed identity field"""
    raw: Any
    user_id: Optional[int] = None

    @property
    def is_valid(self) -> bool:
        return self.user_id is not None


def parse_identity(raw: Any) -> ParsedIdentity:
    """Parse a stored identity value without raising.

    Integers pass through; strings are stripped and must be all digits.
    Booleans, empty strings, non-numeric text and ids outside 1..MAX_USER_ID
    are unparseable.
    """
    if raw is None or isinstance(raw, bool):
        return ParsedIdentity(raw)
    if isinstance(raw, int):
        return ParsedIdentity(raw, raw if 0 < raw <= MAX_USER_ID else None)
    if isinstance(raw, str):
        text = raw.strip()
        if text.isdecimal() and len(text.lstrip("0")) <= len(str(MAX_USER_ID)):
            value = int(text)
            return ParsedIdentity(raw, value if 0 < value <= MAX_USER_ID else None)
    return ParsedIdentity(raw)


def responsibility_fields(task) -> tuple:
    return (
        task.assigned_to,
        task.secondary_responsible,
        task.tertiary_responsible,
        task.subject_owner,
    )


def resolve_responsible_identities(task) -> Set[int]:
    """Distinct user ids responsible for ``task``"""
    identities = set()
    for raw in responsibility_fields(task):
        parsed = parse_identity(raw)
        if parsed.is_valid:
            identities.add(parsed.user_id)
    return identities


def controlling_identities(task) -> Set[int]:
    """Everyone allowed to edit the task: the responsible set plus its creator"""
    identities = resolve_responsible_identities(task)
    creator = parse_identity(task.created_by)
    if creator.is_valid:
        identities.add(creator.user_id)
    return identities
