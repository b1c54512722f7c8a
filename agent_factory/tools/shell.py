"""
Shell command tool.

Executes shell commands in a restricted fashion. Only whitelisted
commands may be invoked, and commands are run in a safe working
directory. Use caution when enabling this tool, as it can still
pose security risks if misconfigured.
"""

import os
import shlex
import subprocess
from typing import Any, Dict, List

from agent_factory.tools.local import ToolTable


class ShellRunner:
    """
    Execute a shell command in a restricted environment.
    """

    def __init__(self, allowed_commands: List[str], working_dir: str) -> None:
        self.allowed_commands = allowed_commands
        self.working_dir = os.path.abspath(working_dir)
        os.makedirs(self.working_dir, exist_ok=True)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "ShellRunner":
        allowed_commands = cfg.get("allowed_commands", ["ls", "echo"])
        working_dir = cfg.get("working_dir", "workspace")
        return cls(allowed_commands=allowed_commands, working_dir=working_dir)

    def run_command(self, command: str, timeout: int = 10) -> str:
        """Execute a whitelisted shell command in the workspace directory."""
        timeout = int(timeout)
        if not command:
            return "shell_command: 'command' is required."
        parts = shlex.split(command)
        if not parts:
            return "shell_command: empty command after parsing."
        base = parts[0]
        # An empty allow-list means no restriction
        if self.allowed_commands and base not in self.allowed_commands:
            return f"shell_command: command '{base}' is not allowed."

        try:
            result = subprocess.run(
                parts,
                cwd=self.working_dir,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return f"shell_command: command timed out after {timeout} seconds."
        except OSError as exc:
            return f"shell_command: could not run '{base}': {exc}"
        output = ""
        if result.stdout:
            output += f"STDOUT:\n{result.stdout}\n"
        if result.stderr:
            output += f"STDERR:\n{result.stderr}\n"
        output += f"Return code: {result.returncode}"
        return output


def register_shell_tool(table: ToolTable, cfg: Dict[str, Any]) -> None:
    table.register(
        ShellRunner.run_command,
        name="shell_command",
        factory=lambda: ShellRunner.from_config(cfg),
    )
