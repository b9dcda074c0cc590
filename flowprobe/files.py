# flowprobe/files.py
"""Resolve values that may be given inline or as a `{file: path}` reference."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

from flowprobe.models import StepFile


def workflow_dir(workflow_path: Optional[str]) -> Path:
    """Directory that relative file references are resolved against."""
    if workflow_path:
        return Path(workflow_path).expanduser().resolve().parent
    return Path.cwd()


def resolve_path(path: str, workflow_path: Optional[str] = None) -> Path:
    p = Path(path).expanduser()
    if p.is_absolute():
        return p
    return workflow_dir(workflow_path) / p


def try_file(value: Union[StepFile, str, None], workflow_path: Optional[str] = None) -> Optional[bytes]:
    """
    Return the bytes behind a step value.

    Strings are used verbatim; `StepFile` references are read from disk.
    """
    if value is None:
        return None
    if isinstance(value, StepFile):
        return resolve_path(value.file, workflow_path).read_bytes()
    return str(value).encode("utf-8")
