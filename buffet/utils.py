"""Utility functions shared across modules."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Tuple

from .errors import ParseError


def read_json_file(path: Path) -> Any:
    """Read a JSON definition file.

    Raises:
        ParseError: The file does not contain valid JSON.
        OSError: The file cannot be read.
    """

    text = path.read_text(encoding="utf-8")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"{path}: {exc}") from exc


def split_full_name(name: str) -> Tuple[str, str]:
    """Split ``package.member`` into its two parts.

    Returns empty strings for names without a package prefix.

    Examples:
        >>> split_full_name("base.firmwareVersion")
        ('base', 'firmwareVersion')
        >>> split_full_name("firmwareVersion")
        ('', '')
    """

    package, sep, member = name.partition(".")
    if not sep or not package or not member:
        return "", ""
    return package, member
