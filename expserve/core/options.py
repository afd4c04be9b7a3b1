"""Packager options: where the project lives and which ports it uses."""
from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path

from expserve.core.errors import ConfigurationError

DEFAULT_CLI_RELPATH = "node_modules/react-native/local-cli/cli.js"


@dataclass(frozen=True)
class PackagerOptions:
    """Resolved-once configuration for one project.

    ``port`` is the local server, ``packager_port`` the bundler behind it.
    Unset fields are filled by the orchestrator (entry point from the
    manifest source, ports from the allocator) before anything starts.
    """

    absolute_path: str
    entry_point: str | None = None
    port: int | None = None
    packager_port: int | None = None
    cli_path: str | None = None
    node_path: str | None = None

    @property
    def resolved_cli_path(self) -> str:
        if self.cli_path:
            return self.cli_path
        return str(Path(self.absolute_path) / DEFAULT_CLI_RELPATH)

    @property
    def working_directory(self) -> str:
        """Two levels above the CLI script (the react-native package root)."""
        return str(Path(self.resolved_cli_path).parent.parent)

    @property
    def project_short_name(self) -> str:
        return Path(self.absolute_path).name

    def resolve_launcher(self) -> str:
        """Return the interpreter that runs the CLI script.

        Raises ConfigurationError when it cannot be found.
        """
        node = self.node_path or shutil.which("node")
        if not node:
            raise ConfigurationError(
                "node not found in PATH. Install Node.js or set node_path."
            )
        return node
