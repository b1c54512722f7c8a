"""
Configuration loader for the agent factory.

The configuration is stored in a YAML file. This module provides a
function to load that file into a Python dictionary and helpers that
read the MCP server section. Sensitive values like API keys are not
stored in the YAML file; instead, they are retrieved from environment
variables as needed by the handlers and connections.
"""

import logging
import os
from typing import Any, Dict, List

import yaml

from agent_factory.errors import ConfigurationError
from agent_factory.tools.remote import ConnectionDescriptor

logger = logging.getLogger(__name__)


def load_app_config(path: str) -> Dict[str, Any]:
    """
    Load the application configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A dictionary representing the configuration.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigurationError: If the top-level configuration is not a mapping.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found at: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigurationError("Top-level configuration must be a mapping/dictionary.")

    return data


def load_connection_descriptors(cfg: Dict[str, Any]) -> List[ConnectionDescriptor]:
    """
    Read the `mcp_servers` section into connection descriptors.

    The section is either a mapping of server name to settings or a list
    of settings with a `name` key. Malformed entries are logged and left
    out so that one bad server does not block the others.
    """
    servers_cfg = cfg.get("mcp_servers") or {}
    if isinstance(servers_cfg, dict):
        entries = [(str(name), entry or {}) for name, entry in servers_cfg.items()]
    elif isinstance(servers_cfg, list):
        entries = [(str((entry or {}).get("name", "")), entry or {}) for entry in servers_cfg]
    else:
        logger.warning("'mcp_servers' must be a mapping or a list; ignoring it")
        return []

    descriptors: List[ConnectionDescriptor] = []
    for name, entry in entries:
        if not isinstance(entry, dict):
            logger.warning("Skipping MCP server '%s': settings must be a mapping", name)
            continue
        if not entry.get("enabled", True):
            logger.debug("MCP server '%s' is disabled", name)
            continue
        try:
            descriptors.append(ConnectionDescriptor.from_config(name, entry))
        except (ConfigurationError, TypeError, ValueError) as exc:
            logger.warning("Skipping misconfigured MCP server '%s': %s", name, exc)
    return descriptors
