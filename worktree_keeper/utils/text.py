"""Slug helpers shared by the registry and the workspace layout."""

import re
from typing import Container

MAX_SLUG_LENGTH = 64

_INVALID_CHARS = re.compile(r"[^a-z0-9-]+")
_REPEATED_HYPHENS = re.compile(r"-{2,}")


def slugify(name: str, fallback: str = "worktree") -> str:
    """Convert an arbitrary name to a filesystem- and git-safe slug.

    "feat/x" -> "feat-x", "My Cool Project" -> "my-cool-project".

    Args:
        name: Name to convert (branch name, project display name)
        fallback: Returned when nothing usable is left

    Returns:
        A slug made only of ``[a-z0-9-]``, at most 64 characters long
    """
    slug = _INVALID_CHARS.sub("-", name.strip().lower())
    slug = _REPEATED_HYPHENS.sub("-", slug).strip("-")

    if len(slug) > MAX_SLUG_LENGTH:
        slug = slug[:MAX_SLUG_LENGTH].rstrip("-")

    return slug or fallback


def unique_slug(name: str, existing: Container[str], fallback: str = "project") -> str:
    """Return a slug for ``name`` that does not collide with ``existing``.

    Tries "my-project", then "my-project-2", "my-project-3", ...
    """
    base = slugify(name, fallback=fallback)
    if base not in existing:
        return base

    suffix = 2
    while f"{base}-{suffix}" in existing:
        suffix += 1
    return f"{base}-{suffix}"
