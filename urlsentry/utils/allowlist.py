"""Allowlist file helpers."""

from __future__ import annotations

from pathlib import Path

from .domains import canonicalize_domain


def read_allowlist(path: Path) -> set[str]:
    """Read allowlist entries from disk (normalized hostnames)."""
    if not path.exists():
        return set()

    entries: set[str] = set()
    for line in path.read_text().splitlines():
        value = line.strip()
        if not value or value.startswith("#"):
            continue
        normalized = canonicalize_domain(value)
        if normalized:
            entries.add(normalized)
    return entries
