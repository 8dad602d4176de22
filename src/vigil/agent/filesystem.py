"""
File System - Sandboxed workspace for agent files.

Actions read and write plain text files here; names are resolved inside the
workspace and anything that would escape it is refused.
"""

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_DIR_NAME = ".vigil"
TODO_FILE = "todo.md"


class FileSystem:
    """Agent workspace rooted at a single directory."""

    def __init__(self, base_dir: str | Path | None = None):
        """
        Initialize file system.

        Args:
            base_dir: Workspace directory. Defaults to .vigil in the current directory.
        """
        self.data_dir = Path(base_dir) if base_dir else Path.cwd() / DEFAULT_DIR_NAME
        self.data_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Using data directory: {self.data_dir}")

        self._init_todo()

    def _init_todo(self) -> None:
        if not self.todo_path.exists():
            self.todo_path.write_text("# Agent Todo\n\n")

    @property
    def todo_path(self) -> Path:
        return self.data_dir / TODO_FILE

    def _resolve(self, filename: str) -> Path | None:
        root = self.data_dir.resolve()
        path = (root / filename).resolve()
        if path == root or root not in path.parents:
            logger.warning(f"Refusing path outside workspace: {filename}")
            return None
        return path

    def read_todo(self) -> str:
        return self.read_file(TODO_FILE) or ""

    def update_todo(self, tasks: list[str]) -> None:
        """Rewrite todo.md from a list of open tasks."""
        if not tasks:
            content = "# Agent Todo\n\n_No pending tasks_\n"
        else:
            content = "# Agent Todo\n" + "".join(f"- [ ] {task}\n" for task in tasks)
        self.write_file(TODO_FILE, content)

    def read_file(self, filename: str) -> str | None:
        """Read a file from the workspace, None if missing or unreadable."""
        path = self._resolve(filename)
        if path is None or not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to read {filename}: {e}")
            return None

    def write_file(self, filename: str, content: str) -> bool:
        """Write (replace) a file in the workspace."""
        path = self._resolve(filename)
        if path is None:
            return False
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
            return True
        except OSError as e:
            logger.error(f"Failed to write {filename}: {e}")
            return False

    def append_file(self, filename: str, content: str) -> bool:
        path = self._resolve(filename)
        if path is None:
            return False
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(content)
            return True
        except OSError as e:
            logger.error(f"Failed to append to {filename}: {e}")
            return False

    def list_files(self) -> list[str]:
        return sorted(f.name for f in self.data_dir.iterdir() if f.is_file())

    def describe(self) -> str:
        """One line per file with its size, for the agent prompt."""
        lines = []
        for name in self.list_files():
            size = (self.data_dir / name).stat().st_size
            lines.append(f"- {name} ({size} bytes)")
        return "\n".join(lines) if lines else "(empty)"

    def cleanup(self) -> None:
        """Remove every file in the workspace and recreate todo.md."""
        if self.data_dir.exists():
            shutil.rmtree(self.data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._init_todo()
