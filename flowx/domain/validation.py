"""Validation rules for folders, projects and their fields.

Two rule sets exist for names. The server rules are the authoritative
ones enforced by the remote store; the client rules are the stricter,
user-facing limits applied before anything is sent. Callers on the
client run both, so whichever is stricter wins.

Every validator raises ``ValidationError`` and returns the normalized value.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from flowx.domain.errors import ConflictError, ValidationError

FOLDER_NAME_MAX_LENGTH = 100
CLIENT_FOLDER_NAME_MAX_LENGTH = 50
PROJECT_NAME_MAX_LENGTH = 200
PROJECT_NAME_MIN_LENGTH = 3
CLIENT_PROJECT_NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 1000
TAG_MAX_LENGTH = 50
MAX_TAGS_COUNT = 20
MAX_FOLDER_DEPTH = 10

RESERVED_NAMES = frozenset(
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{i}" for i in range(1, 10)]
    + [f"LPT{i}" for i in range(1, 10)]
)

_INVALID_FOLDER_CHARS = re.compile(r'[<>:"|?*]')
_CLIENT_FOLDER_CHARS = re.compile(r"^[a-zA-Z0-9\s\-_]+$")
_HEX_COLOR = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")
_WHITESPACE = re.compile(r"\s+")

VALID_STATUSES = ("draft", "active", "archived")
VALID_PRIORITIES = ("low", "medium", "high")


def sanitize_string(value: str) -> str:
    """Trim and collapse internal whitespace."""
    return _WHITESPACE.sub(" ", value.strip())


# Folder names

def validate_folder_name(name: str) -> str:
    """Server-side folder name rules."""
    if not name or not name.strip():
        raise ValidationError("Folder name cannot be empty")
    trimmed = name.strip()
    if len(trimmed) > FOLDER_NAME_MAX_LENGTH:
        raise ValidationError(f"Folder name cannot exceed {FOLDER_NAME_MAX_LENGTH} characters")
    if "/" in trimmed or "\\" in trimmed:
        raise ValidationError("Folder name cannot contain slashes")
    if _INVALID_FOLDER_CHARS.search(trimmed):
        raise ValidationError("Folder name contains invalid characters")
    if trimmed.upper() in RESERVED_NAMES:
        raise ValidationError("Folder name cannot be a reserved system name")
    if trimmed.startswith(".") or trimmed.endswith("."):
        raise ValidationError("Folder name cannot start or end with dots")
    return trimmed


def validate_folder_name_for_client(name: str) -> str:
    """Client-facing folder name rules."""
    if not name or not name.strip():
        raise ValidationError("Folder name is required")
    trimmed = name.strip()
    if len(trimmed) > CLIENT_FOLDER_NAME_MAX_LENGTH:
        raise ValidationError(
            f"Folder name must be at most {CLIENT_FOLDER_NAME_MAX_LENGTH} characters"
        )
    if not _CLIENT_FOLDER_CHARS.match(trimmed):
        raise ValidationError(
            "Folder name can only contain letters, numbers, spaces, hyphens, and underscores"
        )
    return trimmed


def check_unique_sibling_name(
    siblings: Iterable, name: str, exclude_id: Optional[str] = None
) -> None:
    """Reject ``name`` if a non-deleted sibling already uses it (case-insensitive).

    ``siblings`` are folder-like objects sharing the same parent.
    """
    wanted = name.strip().lower()
    for sibling in siblings:
        if sibling.is_deleted or sibling.id == exclude_id:
            continue
        if sibling.name.lower() == wanted:
            raise ConflictError("A folder with this name already exists in the same location")


def check_parent_accepts_children(parent) -> None:
    """``parent`` is the looked-up parent folder, None when the id is unknown."""
    if parent is None or parent.is_deleted:
        raise ValidationError("Parent folder not found or deleted")
    if not parent.allow_subfolders:
        raise ValidationError("Parent folder does not allow subfolders")


def validate_folder_depth(depth: int) -> int:
    if depth < 0:
        raise ValidationError("Folder depth cannot be negative")
    if depth > MAX_FOLDER_DEPTH:
        raise ValidationError(f"Maximum folder depth of {MAX_FOLDER_DEPTH} exceeded")
    return depth


# Project names

def validate_project_name(name: str) -> str:
    """Server-side project name rules."""
    if not name or not name.strip():
        raise ValidationError("Project name cannot be empty")
    trimmed = name.strip()
    if len(trimmed) > PROJECT_NAME_MAX_LENGTH:
        raise ValidationError(f"Project name cannot exceed {PROJECT_NAME_MAX_LENGTH} characters")
    if len(trimmed) < PROJECT_NAME_MIN_LENGTH:
        raise ValidationError(
            f"Project name must be at least {PROJECT_NAME_MIN_LENGTH} characters long"
        )
    return trimmed


def validate_project_name_for_client(name: str) -> str:
    if not name or not name.strip():
        raise ValidationError("Project name is required")
    trimmed = name.strip()
    if len(trimmed) > CLIENT_PROJECT_NAME_MAX_LENGTH:
        raise ValidationError(
            f"Project name must be at most {CLIENT_PROJECT_NAME_MAX_LENGTH} characters"
        )
    return trimmed


# Other fields

def validate_description(description: Optional[str]) -> Optional[str]:
    if not description:
        return description
    if len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationError(f"Description cannot exceed {DESCRIPTION_MAX_LENGTH} characters")
    return description


def validate_color(color: Optional[str]) -> Optional[str]:
    if not color:
        return color
    if not _HEX_COLOR.match(color):
        raise ValidationError("Color must be a valid hex color (e.g., #FF5733 or #F57)")
    return color


def normalize_tags(tags: Iterable[str]) -> List[str]:
    """Trim, lowercase and de-duplicate tags, keeping first-seen order."""
    seen: List[str] = []
    for tag in tags:
        cleaned = sanitize_string(tag).lower()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


def validate_tags(tags: Optional[Iterable[str]]) -> List[str]:
    if not tags:
        return []
    tags = list(tags)
    for tag in tags:
        if "," in tag or ";" in tag:
            raise ValidationError("Tags cannot contain commas or semicolons")
    normalized = normalize_tags(tags)
    if len(normalized) > MAX_TAGS_COUNT:
        raise ValidationError(f"Cannot have more than {MAX_TAGS_COUNT} tags")
    for tag in normalized:
        if len(tag) > TAG_MAX_LENGTH:
            raise ValidationError(f"Each tag cannot exceed {TAG_MAX_LENGTH} characters")
    return normalized


def validate_status(status: str) -> str:
    value = getattr(status, "value", status)
    if value not in VALID_STATUSES:
        raise ValidationError("Status must be active, archived, or draft")
    return value


def validate_priority(priority: str) -> str:
    value = getattr(priority, "value", priority)
    if value not in VALID_PRIORITIES:
        raise ValidationError("Priority must be low, medium, or high")
    return value


_DATETIME = TypeAdapter(datetime)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Accept a datetime, an ISO 8601 string or a unix timestamp."""
    if value is None or isinstance(value, datetime):
        return value
    try:
        return _DATETIME.validate_python(value)
    except PydanticValidationError:
        raise ValidationError("Invalid date") from None


def validate_due_date(due_date: Any, now: Optional[datetime] = None) -> Optional[datetime]:
    due_date = parse_datetime(due_date)
    if due_date is None:
        return None
    now = now or datetime.now(tz=due_date.tzinfo)
    if due_date.timestamp() < 0:
        raise ValidationError("Date cannot be negative")
    if due_date > now + timedelta(days=365):
        raise ValidationError("Date cannot be more than one year in the future")
    return due_date
