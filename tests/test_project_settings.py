from __future__ import annotations

import json

import pytest

from expserve.storage.project_settings import DEFAULT_SETTINGS, ProjectSettings


@pytest.fixture
def settings(data_dir):
    return ProjectSettings(data_dir)


class TestProjectSettings:
    async def test_read_defaults(self, settings, project_root):
        assert await settings.read(str(project_root)) == DEFAULT_SETTINGS

    async def test_write_merges_and_persists(self, settings, project_root):
        root = str(project_root)
        await settings.write(root, {"hostType": "lan"})
        result = await settings.write(root, {"urlRandomness": "ab-cde"})

        assert result["hostType"] == "lan"
        assert result["urlRandomness"] == "ab-cde"
        assert result["dev"] is True
        on_disk = json.loads((project_root / ".exponent" / "settings.json").read_text())
        assert on_disk == {"hostType": "lan", "urlRandomness": "ab-cde"}

    async def test_corrupt_file_falls_back_to_defaults(self, settings, project_root, caplog):
        path = ProjectSettings.settings_path(str(project_root))
        path.parent.mkdir(parents=True)
        path.write_text("{not json")

        assert await settings.read(str(project_root)) == DEFAULT_SETTINGS
        assert "Ignoring unreadable settings file" in caplog.text

    async def test_packager_info_merge(self, settings, project_root):
        root = str(project_root)
        assert await settings.read_packager_info(root) == {}

        await settings.write_packager_info(root, {"port": 19000, "tunnelUrl": None})
        merged = await settings.write_packager_info(root, {"tunnelUrl": "http://a.exp.direct"})

        assert merged == {"port": 19000, "tunnelUrl": "http://a.exp.direct"}
        assert await settings.read_packager_info(root) == merged


class TestPlaceholderUsername:
    async def test_created_once(self, settings, data_dir):
        first = await settings.read_or_create_placeholder_username()
        second = await settings.read_or_create_placeholder_username()

        assert first.startswith("anon-")
        assert first == second
        stored = json.loads((data_dir / "user-settings.json").read_text())
        assert stored["loggedOutPlaceholderUsername"] == first

    async def test_shared_across_instances(self, data_dir):
        name = await ProjectSettings(data_dir).read_or_create_placeholder_username()
        assert await ProjectSettings(data_dir).read_or_create_placeholder_username() == name
