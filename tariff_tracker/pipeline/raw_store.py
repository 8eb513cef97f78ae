import json
import re
from datetime import date
from pathlib import Path

import structlog

from ..config import settings

log = structlog.get_logger()

_FILE_RE = re.compile(r"^(?:failed-)?(\d{4}-\d{2}-\d{2})\.json$")


def raw_path(day: date | str, failed: bool = False, raw_dir: str | None = None) -> Path:
    day_str = day.isoformat() if isinstance(day, date) else str(day)
    name = f"failed-{day_str}.json" if failed else f"{day_str}.json"
    return Path(raw_dir or settings.raw_dir) / name


def save_raw_locally(day: date | str, rows: list, failed: bool = False, raw_dir: str | None = None) -> Path:
    """Write the source rows for `day` where a later replay can pick them up."""
    path = raw_path(day, failed=failed, raw_dir=raw_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(rows, indent=2, default=str), encoding="utf-8")
    log.info("raw_saved", target_date=str(day), path=str(path), rows=len(rows))
    return path


def date_from_filename(path: Path) -> date | None:
    match = _FILE_RE.match(Path(path).name)
    return date.fromisoformat(match.group(1)) if match else None


def load_raw(path: Path) -> list:
    rows = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(rows, list):
        raise ValueError(f"{path}: expected a JSON array of rows")
    return rows


def list_raw_files(target: Path) -> list[tuple[date, Path]]:
    target = Path(target)
    paths = sorted(target.glob("*.json")) if target.is_dir() else [target]
    out = []
    for path in paths:
        day = date_from_filename(path)
        if day is None:
            log.warning("raw_file_skipped", path=str(path), reason="no date in file name")
            continue
        out.append((day, path))
    out.sort(key=lambda item: item[0])
    return out
