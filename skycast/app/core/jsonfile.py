"""
Small JSON-on-disk helpers shared by the file-backed stores (jobs, devices).

Writes go to a temp file in the target directory and are then moved over
the target with os.replace, so readers see either the old or the new
content and never a truncated file. The temp file is fsynced before the
rename, so a write that returned has reached the disk.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from skycast.app.core.errors import StorageError


def read_json(path: Path, store: str) -> Optional[Any]:
    """Parsed content of ``path``, or None when the file does not exist."""
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise StorageError(store, f"cannot read {path}: {e}") from e


def write_json_atomic(path: Path, payload: Any, store: str) -> None:
    content = json.dumps(payload, indent=2)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    except OSError as e:
        raise StorageError(store, f"cannot write {path}: {e}") from e
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        Path(tmp_path).unlink(missing_ok=True)
        raise StorageError(store, f"cannot write {path}: {e}") from e
