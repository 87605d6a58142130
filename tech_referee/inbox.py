"""Inbox folder scanning, front matter parsing, and archive logic."""

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import frontmatter

from tech_referee.errors import InvalidRequest

logger = logging.getLogger(__name__)


@dataclass
class InboxRequest:
    """One queued comparison. Unset fields fall back to CLI flags, then config defaults."""

    query: str
    concurrency: int | None = None
    provider: str | None = None
    model: str | None = None
    answers: dict[str, str | list[str]] = field(default_factory=dict)


def ensure_dirs(inbox_dir: Path, archive_dir: Path) -> None:
    """Create inbox and archive directories if they don't exist."""
    inbox_dir.mkdir(parents=True, exist_ok=True)
    archive_dir.mkdir(parents=True, exist_ok=True)


def scan_inbox(inbox_dir: Path) -> list[Path]:
    """Return all .md files in inbox_dir, sorted by mtime ascending (oldest first)."""
    files = list(inbox_dir.glob("*.md"))
    return sorted(files, key=lambda p: p.stat().st_mtime)


def parse_file(file_path: Path) -> InboxRequest:
    """Parse a query file with optional YAML front matter.

    Recognized keys: concurrency (int), provider (str), model (str) and
    answers (mapping of clarification id -> answer). Unknown keys are ignored.

    Raises:
        InvalidRequest: Empty body or malformed front matter values.
    """
    post = frontmatter.load(str(file_path))
    query = post.content.strip()
    if not query:
        raise InvalidRequest(f"{file_path.name} has no query text")
    meta = dict(post.metadata)

    answers_raw = meta.get("answers") or {}
    if not isinstance(answers_raw, dict):
        raise InvalidRequest(f"{file_path.name}: 'answers' must be a mapping")
    answers: dict[str, str | list[str]] = {
        str(k): [str(x) for x in v] if isinstance(v, list) else str(v)
        for k, v in answers_raw.items()
    }

    concurrency = None
    if "concurrency" in meta:
        try:
            concurrency = int(meta["concurrency"])
        except (TypeError, ValueError) as exc:
            raise InvalidRequest(f"{file_path.name}: concurrency must be an integer") from exc

    return InboxRequest(
        query=query,
        concurrency=concurrency,
        provider=str(meta["provider"]) if meta.get("provider") else None,
        model=str(meta["model"]) if meta.get("model") else None,
        answers=answers,
    )


def archive_file(file_path: Path, archive_dir: Path, *, failed: bool = False) -> Path:
    """Move file to archive_dir with a timestamp prefix.

    Args:
        file_path: Source file to archive.
        archive_dir: Destination directory.
        failed: If True, prefix filename with "FAILED_".

    Returns:
        Path to the archived file.
    """
    timestamp = datetime.now().strftime("%Y-%m-%dT%H%M")
    prefix = "FAILED_" if failed else ""
    dest = archive_dir / f"{prefix}{timestamp}_{file_path.name}"
    shutil.move(str(file_path), str(dest))
    logger.info("Archived %s -> %s", file_path.name, dest.name)
    return dest
