"""
Utility functions for file system operations and text handling.

This module provides helper functions for:
- Splitting manuscript text into paragraphs
- Naming job artifacts deterministically from the job id
- Sanitizing user-provided filenames for safe filesystem usage
- Ensuring directory creation with proper error handling
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional, Tuple

# One or more blank (or whitespace-only) lines separate two paragraphs
PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

# Pattern to match characters that are not safe for filesystem paths
# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")

ARTIFACT_PREFIX = "job-"
ARTIFACT_EXTENSIONS = ("docx", "pdf")
ARTIFACT_PATTERN = re.compile(r"^job-([0-9a-f]{32})\.(docx|pdf)$")


def split_paragraphs(text: str) -> List[str]:
    """
    Split manuscript text into trimmed, non-empty paragraphs.

    Args:
        text: Raw manuscript text

    Returns:
        Paragraphs in document order; empty for blank input

    Example:
        >>> split_paragraphs("A\\n\\n\\n\\nB")
        ['A', 'B']
        >>> split_paragraphs("   ")
        []
    """
    parts = (part.strip() for part in PARAGRAPH_BREAK.split(text or ""))
    return [part for part in parts if part]


def artifact_name(job_id: str, extension: str) -> str:
    """
    Build the deterministic artifact filename for a job.

    Args:
        job_id: The job identifier
        extension: Artifact type without the dot ("docx" or "pdf")

    Returns:
        Filename such as ``job-<id>.docx``
    """
    if extension not in ARTIFACT_EXTENSIONS:
        raise ValueError(f"Unsupported artifact extension: {extension}")
    return f"{ARTIFACT_PREFIX}{job_id}.{extension}"


def parse_artifact_name(name: str) -> Optional[Tuple[str, str]]:
    """Return ``(job_id, extension)`` for an artifact filename, else None."""
    match = ARTIFACT_PATTERN.match(name)
    if not match:
        return None
    return match.group(1), match.group(2)


def sanitize_label(label: str, fallback: str) -> str:
    """
    Generate a filesystem-safe label from user input.

    Args:
        label: The original label string to sanitize
        fallback: Default value to return if sanitization results in an empty string

    Returns:
        A lowercase, filesystem-safe label or the fallback value

    Example:
        >>> sanitize_label("My Template!", "template")
        "my-template"
        >>> sanitize_label("@#$", "template")
        "template"
    """
    cleaned = SANITIZE_PATTERN.sub("-", label.strip())
    cleaned = cleaned.strip("-_.").lower()
    return cleaned or fallback


def sanitize_filename(filename: str, fallback: str = "upload") -> str:
    """Sanitize the stem of a filename while keeping its lowercase extension."""
    path = Path(filename or "")
    stem = sanitize_label(path.stem, fallback=fallback)
    suffix = SANITIZE_PATTERN.sub("", path.suffix.lower())
    return f"{stem}{suffix}"


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
