"""
Runtime settings for the compiler entry points.

Values come from ``GRAPHSCRIPT_*`` environment variables.  The CLI and the
server call ``load_dotenv()`` first, so a ``.env`` file in the working
directory works the same way as exported variables:

    GRAPHSCRIPT_TOOL_NAME=graphscript      # name in the provenance header
    GRAPHSCRIPT_INCLUDE_TIMESTAMP=false    # add a "# Generated-At:" line
    GRAPHSCRIPT_INSTALL_GUARD=false        # embed the pip install-if-missing block
    GRAPHSCRIPT_LOAD_PLUGINS=true          # load graphscript.descriptors entry points
    GRAPHSCRIPT_LOG_LEVEL=WARNING
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from graphscript import TOOL_NAME, __version__


_TRUE  = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _env_flag(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{key} must be a boolean flag, got {raw!r}")


@dataclass(frozen=True)
class CompilerSettings:
    tool_name: str = TOOL_NAME
    tool_version: str = __version__
    include_timestamp: bool = False
    install_guard: bool = False
    load_plugins: bool = True
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "CompilerSettings":
        env = os.environ if env is None else env
        return cls(
            tool_name=env.get("GRAPHSCRIPT_TOOL_NAME", TOOL_NAME),
            include_timestamp=_env_flag(env, "GRAPHSCRIPT_INCLUDE_TIMESTAMP", False),
            install_guard=_env_flag(env, "GRAPHSCRIPT_INSTALL_GUARD", False),
            load_plugins=_env_flag(env, "GRAPHSCRIPT_LOAD_PLUGINS", True),
            log_level=env.get("GRAPHSCRIPT_LOG_LEVEL", "WARNING").upper(),
        )

    def with_overrides(self, **overrides) -> "CompilerSettings":
        """Copy with the given fields replaced; None values are ignored."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @property
    def logging_level(self) -> int:
        level = logging.getLevelName(self.log_level)
        return level if isinstance(level, int) else logging.WARNING


__all__ = ["CompilerSettings"]
