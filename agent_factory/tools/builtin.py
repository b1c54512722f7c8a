"""
Built-in local tool catalog.

Turns the `tools.local` config section into a registration table.
Each block is opt-in through `enabled`; blocks whose instance cannot be
built (for example web search without an endpoint) are dropped later
by `LocalToolSource`.

    tools:
      local:
        files: {enabled: true, root_dir: workspace}
        shell: {enabled: false, allowed_commands: [ls, echo]}
        web_search: {enabled: true, endpoint: https://search.example/api}
        web_fetch: {enabled: true}
        weather: {enabled: true}
"""

from typing import Any, Dict

from agent_factory.tools.files import register_file_tools
from agent_factory.tools.local import ToolTable
from agent_factory.tools.shell import register_shell_tool
from agent_factory.tools.weather import weather_tools
from agent_factory.tools.web import register_web_tools


def build_local_table(local_cfg: Dict[str, Any]) -> ToolTable:
    table = ToolTable()

    files_cfg = local_cfg.get("files") or {}
    if files_cfg.get("enabled", False):
        register_file_tools(table, files_cfg)

    shell_cfg = local_cfg.get("shell") or {}
    if shell_cfg.get("enabled", False):
        register_shell_tool(table, shell_cfg)

    register_web_tools(table, local_cfg)

    weather_cfg = local_cfg.get("weather") or {}
    if weather_cfg.get("enabled", False):
        table.extend(weather_tools)

    return table
