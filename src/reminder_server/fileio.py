from __future__ import annotations

import hashlib
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Union

PathLike = Union[str, Path]


def ensure_dir(p: PathLike) -> Path:
    """Ensure that a directory exists, returning it as a Path."""
    p = Path(p)
    try:
        p.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OSError(f"Failed to create directory {p}: {e}") from e
    return p


def key_filename(key: str, suffix: str = ".json") -> str:
    """Collision-free filename for an arbitrary key (e.g. an identity).

    A short readable prefix plus the sha256 of the raw key. The prefix never
    contains dots, so it cannot clash with a quarantined ``*.corrupt.json``.
    """
    prefix = re.sub(r"[^\w\-@]+", "_", key)[:48].strip("_") or "key"
    digest = hashlib.sha256(key.encode("utf-8", "surrogatepass")).hexdigest()
    return f"{prefix}-{digest}{suffix}"


def read_json(path: PathLike) -> Any:
    with Path(path).open("r", encoding="utf-8") as f:
        return json.load(f)


def atomic_write_json(path: PathLike, data: Any) -> None:
    """Write JSON via temp file + fsync + rename so readers never see a partial file."""
    p = Path(path)
    ensure_dir(p.parent)
    try:
        text = json.dumps(data, ensure_ascii=False, indent=2)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to serialize {p.name} to JSON: {e}") from e

    with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=str(p.parent)) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    try:
        os.replace(tmp_name, p)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def quarantine(path: PathLike) -> Path:
    """Move an unreadable file aside (``x.json`` -> ``x.corrupt.json``) and return the new path."""
    p = Path(path)
    bad = p.with_suffix(".corrupt" + p.suffix)
    p.replace(bad)
    return bad
