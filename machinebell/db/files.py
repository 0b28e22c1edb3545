"""JSON data files: creation, loading and atomic rewrites."""

import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class CorruptDataFileError(ValueError):
    """A data file exists but does not hold the expected JSON list."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Data file {path} is corrupt: {reason}")
        self.path = path


def ensure_data_file(path: Path) -> None:
    """Create an empty data file (and its directory) if it does not exist."""
    if path.exists():
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    write_json_atomic(path, [])
    logger.info(f"Created empty data file at {path}")


def read_json_list(path: Path) -> list[Any]:
    """Read a data file that must contain a JSON list."""
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        # A torn write leaves unparsable content behind
        raise CorruptDataFileError(path, str(e)) from e

    if not isinstance(data, list):
        raise CorruptDataFileError(path, f"expected a list, got {type(data).__name__}")

    return data


def write_json_atomic(path: Path, payload: Any) -> None:
    """Rewrite a data file through a temporary file and a rename."""
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)
