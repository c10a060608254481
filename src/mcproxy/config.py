"""Loading of MCP server configuration files.

The file maps server names to :class:`MCPServerConfig` entries under a
top-level ``servers`` key.  JSON files may contain ``//`` and ``/* */``
comments; ``.yaml``/``.yml`` files are read with PyYAML.

Example ``.vscode/mcp.json``::

    {
      // local filesystem server
      "servers": {
        "fs": {"command": "npx", "args": ["@mcp/filesystem", "${workspaceFolder}"]},
        "search": {"type": "http", "url": "https://search.example.com/mcp",
                   "headers": {"Authorization": "Bearer ${env:SEARCH_TOKEN}"}}
      }
    }
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError

from mcproxy.protocols.errors import ConfigurationError
from mcproxy.protocols.mcp.models import MCPServerConfig
from mcproxy.protocols.mcp.placeholders import PlaceholderContext, resolve_server_config

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = ".vscode/mcp.json"

# String literals are matched first so comment markers inside them survive.
_JSONC_TOKEN = re.compile(r'"(?:\\.|[^"\\])*"|//[^\n]*|/\*.*?\*/', re.DOTALL)


class ConfigFileError(ConfigurationError):
    """A config file could not be read, parsed, or validated."""


class MCPConfig(BaseModel):
    """All servers declared in one config file."""

    servers: dict[str, MCPServerConfig] = {}

    def resolved(self, context: PlaceholderContext) -> MCPConfig:
        """Return a copy with placeholders resolved in every server entry."""
        return MCPConfig(
            servers={
                name: resolve_server_config(server, context)
                for name, server in self.servers.items()
            }
        )


def strip_json_comments(text: str) -> str:
    """Remove ``//`` and ``/* */`` comments that are outside string literals."""
    return _JSONC_TOKEN.sub(
        lambda match: match.group(0) if match.group(0).startswith('"') else "",
        text,
    )


def load_config(path: str | Path) -> MCPConfig:
    """Read and validate a config file.

    Raises:
        ConfigFileError: On read errors, parse errors, or schema violations.
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigFileError(f"Cannot read {path}: {exc}") from exc

    data: Any
    if path.suffix in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ConfigFileError(f"YAML parse error in {path}: {exc}") from exc
    else:
        try:
            data = json.loads(strip_json_comments(raw))
        except json.JSONDecodeError as exc:
            raise ConfigFileError(f"JSON parse error in {path}: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigFileError(f"{path} must contain a mapping")
    if "servers" not in data:
        logger.info("No servers defined in %s", path)

    try:
        return MCPConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigFileError(f"Invalid config in {path}: {exc}") from exc


def find_config(workspace: str | Path, config_file: str = DEFAULT_CONFIG_FILE) -> Path | None:
    """Locate the config file for *workspace*; ``None`` if it does not exist.

    Absolute *config_file* paths are used as-is; relative ones are taken
    relative to the workspace.  A blank *config_file* means the default.
    """
    candidate = Path(config_file.strip() or DEFAULT_CONFIG_FILE)
    if not candidate.is_absolute():
        candidate = Path(workspace) / candidate
    return candidate if candidate.is_file() else None
