"""
Append-only journal of discarded local edits.

Server-wins resolution throws local edits away. When a journal path is
configured, each discarded edit is written here as one JSON line first,
so a user can recover what they typed.
"""

import json
import logging
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from .conflict import Conflict

logger = logging.getLogger(__name__)


class ConflictJournal:
    """JSONL file of Conflict records."""

    def __init__(self, path: Path):
        """Initialize the journal.

        Args:
            path: Path to the journal file (created on first write)
        """
        self.path = path

    async def record(self, conflict: Conflict) -> None:
        await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
        async with aiofiles.open(self.path, "a", encoding="utf-8") as f:
            await f.write(json.dumps(conflict.to_dict()) + "\n")

    async def read_all(self) -> list[dict[str, Any]]:
        """Load every journaled conflict; unreadable lines are skipped."""
        if not await aiofiles.os.path.exists(self.path):
            return []

        entries: list[dict[str, Any]] = []
        async with aiofiles.open(self.path, encoding="utf-8") as f:
            content = await f.read()
        for line in content.splitlines():
            if not line.strip():
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning(f"Skipping corrupt line in conflict journal {self.path}")
        return entries

    async def clear(self) -> None:
        if await aiofiles.os.path.exists(self.path):
            await aiofiles.os.remove(self.path)
