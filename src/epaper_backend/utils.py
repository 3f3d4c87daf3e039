"""
Utility functions for file system operations.

This module provides helper functions for:
- Ensuring directory creation with explicit permissions
- Best-effort, idempotent removal of directory trees
- Pruning empty parent directories up to a fixed boundary
- Generating short unique tokens for directory names
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List
from uuid import uuid4

DIR_MODE = 0o755
FILE_MODE = 0o644


def ensure_directory(path: Path, mode: int = DIR_MODE) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    This is a safe idempotent operation that won't fail if the directory
    already exists.

    Args:
        path: The directory path to create
        mode: Permission bits for newly created directories

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(mode=mode, parents=True, exist_ok=True)
    return path


def unique_token() -> str:
    """
    Get a 13 character hex token for directory names.

    Example:
        >>> len(unique_token())
        13
    """
    return uuid4().hex[:13]


def remove_tree(path: Path) -> List[str]:
    """
    Delete a directory tree, collecting failures instead of raising.

    Symlinks are unlinked, never followed. Calling this on a path that does
    not exist returns an empty list, so it is safe to call repeatedly.

    Args:
        path: Directory (or file) to remove

    Returns:
        Human-readable warnings, one per entry that could not be removed
    """
    warnings: List[str] = []
    if not os.path.lexists(path):
        return warnings

    if path.is_symlink() or not path.is_dir():
        try:
            path.unlink()
        except OSError as exc:
            warnings.append(f"Could not delete file {path}: {exc}")
        return warnings

    for root, dirnames, filenames in os.walk(path, topdown=False):
        root_path = Path(root)
        for name in filenames:
            try:
                (root_path / name).unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                warnings.append(f"Could not delete file {root_path / name}: {exc}")
        for name in dirnames:
            child = root_path / name
            try:
                if child.is_symlink():
                    child.unlink()
                else:
                    child.rmdir()
            except FileNotFoundError:
                continue
            except OSError as exc:
                warnings.append(f"Could not remove directory {child}: {exc}")

    try:
        path.rmdir()
    except FileNotFoundError:
        pass
    except OSError as exc:
        warnings.append(f"Could not remove directory {path}: {exc}")
    return warnings


def prune_empty_parents(start: Path, stop: Path) -> List[str]:
    """
    Remove ``start`` and its ancestors while they are empty, stopping below ``stop``.

    ``stop`` itself is never removed. Non-empty or missing directories end the
    walk quietly; only unexpected errors are reported.

    Args:
        start: First directory to consider
        stop: Boundary directory that is kept even when empty

    Returns:
        Warnings for directories that were empty but could not be removed
    """
    warnings: List[str] = []
    stop = stop.resolve()
    current = start.resolve()
    while current != stop and stop in current.parents:
        try:
            if any(current.iterdir()):
                break
            current.rmdir()
        except FileNotFoundError:
            pass
        except OSError as exc:
            warnings.append(f"Could not remove empty directory {current}: {exc}")
            break
        current = current.parent
    return warnings
