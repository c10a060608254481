"""Placeholder resolution for server configuration values.

Substitutes ``${name}`` and ``${env:VAR}`` tokens in the command, arguments,
environment values, URL and header values of an :class:`MCPServerConfig`.
Tokens that are not recognised are left untouched so literal ``${...}`` text
passes through.

Usage::

    ctx = PlaceholderContext.from_environment(workspace_folder="/src/app")
    resolve("${workspaceFolder}/bin/server", ctx)   # "/src/app/bin/server"
    resolve("${env:API_KEY}", ctx)                  # value, or "" if unset
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mcproxy.protocols.mcp.models import MCPServerConfig

_TOKEN = re.compile(r"\$\{([^}]*)\}")


@dataclass(frozen=True)
class PlaceholderContext:
    """Values available to placeholder tokens."""

    workspace_folder: str | None = None
    user_home: str = ""
    environ: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_environment(cls, workspace_folder: str | Path | None = None) -> PlaceholderContext:
        """Snapshot the current process environment and home directory."""
        return cls(
            workspace_folder=str(workspace_folder) if workspace_folder is not None else None,
            user_home=str(Path.home()),
            environ=dict(os.environ),
        )


def _lookup(name: str, context: PlaceholderContext) -> str | None:
    if name.startswith("env:"):
        return context.environ.get(name[4:], "")
    if name == "userHome":
        return context.user_home
    if name == "pathSeparator":
        return os.sep
    if context.workspace_folder is None:
        return None
    if name in ("workspaceFolder", "workspaceRoot"):
        return context.workspace_folder
    if name == "workspaceFolderBasename":
        return Path(context.workspace_folder).name
    return None


def resolve(value: str, context: PlaceholderContext) -> str:
    """Replace every recognised token in *value*."""

    def _replace(match: re.Match[str]) -> str:
        resolved = _lookup(match.group(1), context)
        return match.group(0) if resolved is None else resolved

    return _TOKEN.sub(_replace, value)


def resolve_server_config(config: MCPServerConfig, context: PlaceholderContext) -> MCPServerConfig:
    """Return a copy of *config* with placeholders resolved in every value field."""
    return config.model_copy(
        update={
            "command": resolve(config.command, context) if config.command is not None else None,
            "args": [resolve(arg, context) for arg in config.args],
            "env": {key: resolve(val, context) for key, val in config.env.items()},
            "url": resolve(config.url, context) if config.url is not None else None,
            "headers": {key: resolve(val, context) for key, val in config.headers.items()},
        }
    )
