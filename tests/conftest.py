from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from expserve.core.options import DEFAULT_CLI_RELPATH, PackagerOptions

# Stand-in for react-native's cli.js, run with the Python interpreter.
FAKE_PACKAGER = """\
import signal
import sys
import time
from pathlib import Path

if {ignore_term}:
    signal.signal(signal.SIGTERM, signal.SIG_IGN)
Path(__file__).with_name("args.txt").write_text("\\n".join(sys.argv[1:]))
print("Loading dependency graph...", flush=True)
print("React packager ready.", flush=True)
print("warn: slow filesystem", file=sys.stderr, flush=True)
while True:
    time.sleep(0.1)
"""

PACKAGE_JSON = {
    "name": "my-app",
    "main": "src/App.js",
    "dependencies": {"react-native": "github:exponentjs/react-native#sdk-10.0.0"},
    "exp": {"name": "My App", "sdkVersion": "10.0.0"},
}


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Provide an isolated data directory for settings and session state."""
    d = tmp_path / "data"
    d.mkdir()
    return d


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """A project directory named MyApp with a package.json."""
    root = tmp_path / "MyApp"
    root.mkdir()
    (root / "package.json").write_text(json.dumps(PACKAGE_JSON))
    return root


def _write_cli(root: Path, ignore_term: bool) -> Path:
    cli = root / DEFAULT_CLI_RELPATH
    cli.parent.mkdir(parents=True, exist_ok=True)
    cli.write_text(FAKE_PACKAGER.format(ignore_term=ignore_term))
    return cli


@pytest.fixture
def fake_cli(project_root: Path) -> Path:
    return _write_cli(project_root, ignore_term=False)


@pytest.fixture
def stubborn_cli(project_root: Path) -> Path:
    """A packager that ignores SIGTERM."""
    return _write_cli(project_root, ignore_term=True)


@pytest.fixture
def packager_options(project_root: Path) -> PackagerOptions:
    return PackagerOptions(
        absolute_path=str(project_root),
        entry_point="src/App.js",
        port=19000,
        packager_port=19001,
        node_path=sys.executable,
    )
