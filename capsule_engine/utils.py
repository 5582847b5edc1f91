import json
import logging
import os
import shutil
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


def ensure_dir(path: str | Path) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def safe_unlink(path: Optional[str | Path]) -> None:
    """Remove a scratch file if it exists; never raises for a missing file."""
    if not path:
        return
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)


def copy_file(src: str | Path, dest_dir: str | Path, name: str) -> str:
    ensure_dir(dest_dir)
    dest = Path(dest_dir) / name
    shutil.copyfile(src, dest)
    return str(dest)


def write_json(path: str | Path, obj) -> str:
    path = str(path)
    ensure_dir(Path(path).parent)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2)
    return path
