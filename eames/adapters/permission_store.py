"""Remembered tool approvals.

Tools the user chose to "allow always" are kept at two levels:
- Global: ~/.eames/allowed_tools.json (every project)
- Project: {project_dir}/.eames/allowed_tools.json
"""
from __future__ import annotations

import json
import logging
from pathlib import Path

from eames.shared.services.durable_write import atomic_write_json

logger = logging.getLogger(__name__)

FILENAME = "allowed_tools.json"


def default_global_dir() -> Path:
    return Path.home() / ".eames"


class PermissionStore:
    """Load and save the set of always-allowed tool names."""

    def __init__(
        self,
        project_dir: Path | None = None,
        global_dir: Path | None = None,
    ) -> None:
        self._global_path = (global_dir or default_global_dir()) / FILENAME
        self._project_path = (
            Path(project_dir) / ".eames" / FILENAME if project_dir else None
        )

    def load(self) -> set[str]:
        """Global and project allow lists merged."""
        allowed = self._read(self._global_path)
        if self._project_path is not None:
            allowed |= self._read(self._project_path)
        return allowed

    def add_project(self, tool_name: str) -> None:
        """Allow *tool_name* for this project (globally when there is none)."""
        self._add(self._project_path or self._global_path, tool_name)

    def add_global(self, tool_name: str) -> None:
        self._add(self._global_path, tool_name)

    @staticmethod
    def _read(path: Path) -> set[str]:
        if not path.exists():
            return set()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Failed to load %s", path)
            return set()
        if isinstance(data, list):
            return {str(name) for name in data}
        return set()

    @classmethod
    def _add(cls, path: Path, tool_name: str) -> None:
        names = cls._read(path)
        if tool_name in names:
            return
        names.add(tool_name)
        try:
            atomic_write_json(path, sorted(names))
        except OSError:
            logger.warning("Failed to write %s", path)
