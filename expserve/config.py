from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from expserve.core.options import PackagerOptions


def _optional_int(name: str) -> int | None:
    value = os.environ.get(name, "")
    return int(value) if value else None


@dataclass
class Config:
    project_root: Path
    ngrok_domain: str = "exp.direct"
    ngrok_auth_token: str = ""
    api_base_url: str = "https://exp.host"
    data_dir: Path = field(default_factory=lambda: Path.home() / ".expserve")
    port: int | None = None
    packager_port: int | None = None
    entry_point: str | None = None

    @classmethod
    def from_env(cls) -> Config:
        load_dotenv()
        root = os.environ.get("EXPSERVE_PROJECT_ROOT", "") or os.getcwd()
        data_dir = os.environ.get("EXPSERVE_DATA_DIR", "")
        return cls(
            project_root=Path(root).expanduser().resolve(),
            ngrok_domain=os.environ.get("EXPSERVE_NGROK_DOMAIN", "exp.direct"),
            ngrok_auth_token=os.environ.get("EXPSERVE_NGROK_AUTH_TOKEN", ""),
            api_base_url=os.environ.get("EXPSERVE_API_BASE_URL", "https://exp.host"),
            data_dir=Path(data_dir).expanduser() if data_dir else Path.home() / ".expserve",
            port=_optional_int("EXPSERVE_PORT"),
            packager_port=_optional_int("EXPSERVE_PACKAGER_PORT"),
            entry_point=os.environ.get("EXPSERVE_ENTRY_POINT") or None,
        )

    def packager_options(self) -> PackagerOptions:
        return PackagerOptions(
            absolute_path=str(self.project_root),
            entry_point=self.entry_point,
            port=self.port,
            packager_port=self.packager_port,
        )
