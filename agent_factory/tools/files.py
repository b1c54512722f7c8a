"""
File tools for reading and writing files within a safe workspace.

These tools ensure that the agent can only access files inside a
configured root directory to prevent path traversal attacks. File
operations are text-based and limited in scope. Both tools are
instance-bound: the table entry carries a factory building a
`FileTools` from the `tools.local.files` config block.
"""

import os
from typing import Any, Dict

from agent_factory.tools.local import ToolTable


class FileTools:
    """
    File access confined to `root_dir`.
    """

    def __init__(self, root_dir: str) -> None:
        self.root_dir = os.path.abspath(root_dir)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "FileTools":
        root_dir = cfg.get("root_dir", "workspace")
        os.makedirs(root_dir, exist_ok=True)
        return cls(root_dir=root_dir)

    def _resolve(self, rel_path: str) -> str:
        abs_path = os.path.abspath(os.path.join(self.root_dir, rel_path))
        if os.path.commonpath([abs_path, self.root_dir]) != self.root_dir:
            return ""
        return abs_path

    def read_file(self, path: str, max_chars: int = 8000) -> str:
        """Read a text file from the safe workspace directory."""
        if not path:
            return "read_file: 'path' is required."
        abs_path = self._resolve(path)
        if not abs_path:
            return "read_file: access denied outside workspace root."
        if not os.path.exists(abs_path):
            return f"read_file: file '{path}' does not exist."
        try:
            with open(abs_path, "r", encoding="utf-8") as f:
                content = f.read(int(max_chars))
        except OSError as exc:
            return f"read_file: error reading file: {exc}"
        return content

    def write_file(self, path: str, content: str = "", overwrite: bool = False) -> str:
        """Write text content to a file in the safe workspace directory."""
        if not path:
            return "write_file: 'path' is required."
        abs_path = self._resolve(path)
        if not abs_path:
            return "write_file: access denied outside workspace root."
        if os.path.exists(abs_path) and not overwrite:
            return "write_file: file already exists and overwrite is false."
        try:
            os.makedirs(os.path.dirname(abs_path), exist_ok=True)
            with open(abs_path, "w", encoding="utf-8") as f:
                f.write(content)
        except OSError as exc:
            return f"write_file: error writing file: {exc}"
        return f"write_file: wrote {len(content)} characters to '{path}'."


def register_file_tools(table: ToolTable, cfg: Dict[str, Any]) -> None:
    factory = lambda: FileTools.from_config(cfg)  # noqa: E731
    table.register(FileTools.read_file, name="read_file", factory=factory)
    if cfg.get("allow_write", True):
        table.register(FileTools.write_file, name="write_file", factory=factory)
