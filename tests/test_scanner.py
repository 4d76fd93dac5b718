import os

import pytest
from tomlkit.exceptions import TOMLKitError

from miseboard.config import ScanConfig
from miseboard.model import HealthStatus, InstalledTool
from miseboard.scanner import (
    build_installed_map, parse_project, parse_tool_requirements, satisfies,
    scan_projects,
)

INSTALLED = [
    InstalledTool("node", "18.0.0", active=True),
    InstalledTool("node", "20.0.0"),
    InstalledTool("python", "3.12.1"),
    InstalledTool("ruby", "3.3.0", installed=False),
]


def write_manifest(directory, body):
    directory.mkdir(parents=True, exist_ok=True)
    (directory / ".mise.toml").write_text(body)
    return directory


def test_satisfies():
    assert satisfies("3.12.12", "3.12")
    assert satisfies("3.12", "3.12")
    assert not satisfies("3.120.0", "3.12")
    assert not satisfies("3.11.9", "3.12")


def test_installed_map_skips_uninstalled():
    installed = build_installed_map(INSTALLED)
    assert installed == {"node": ["18.0.0", "20.0.0"], "python": ["3.12.1"]}


def test_parse_requirements_shapes():
    reqs = parse_tool_requirements(
        '[tools]\nnode = "20"\npython = ["3.12", "3.11"]\ngo = { version = "1.22" }\n'
    )
    assert reqs == [("node", "20"), ("python", "3.12"), ("go", "1.22")]


def test_parse_requirements_no_tools_table():
    assert parse_tool_requirements('[env]\nFOO = "bar"\n') == []


def test_parse_requirements_malformed():
    with pytest.raises(TOMLKitError):
        parse_tool_requirements("[tools\nnode = ")


class TestParseProject:
    def installed(self):
        return build_installed_map(INSTALLED)

    def test_healthy_picks_satisfying_version(self, tmp_path):
        write_manifest(tmp_path, '[tools]\nnode = "18"\n')
        project = parse_project(str(tmp_path), str(tmp_path / ".mise.toml"), self.installed())
        assert project.health == HealthStatus.HEALTHY
        assert project.tool_count == 1
        assert project.tools[0].installed == "18.0.0"

    def test_outdated(self, tmp_path):
        write_manifest(tmp_path, '[tools]\npython = "3.13"\n')
        project = parse_project(str(tmp_path), str(tmp_path / ".mise.toml"), self.installed())
        assert project.health == HealthStatus.OUTDATED
        assert project.tools[0].installed == "3.12.1"

    def test_worst_status_wins(self, tmp_path):
        write_manifest(tmp_path, '[tools]\nnode = "latest"\npython = "3.13"\nruby = "3.3"\n')
        project = parse_project(str(tmp_path), str(tmp_path / ".mise.toml"), self.installed())
        assert project.health == HealthStatus.MISSING
        statuses = {t.tool: t.status for t in project.tools}
        assert statuses == {
            "node": HealthStatus.HEALTHY,
            "python": HealthStatus.OUTDATED,
            "ruby": HealthStatus.MISSING,
        }

    def test_unparseable_manifest(self, tmp_path):
        write_manifest(tmp_path, "[tools\n")
        project = parse_project(str(tmp_path), str(tmp_path / ".mise.toml"), self.installed())
        assert project.health == HealthStatus.NO_CONFIG
        assert project.tool_count == 0
        assert project.tools == []


class TestScan:
    def test_finds_projects_and_stops_at_manifest(self, tmp_path):
        write_manifest(tmp_path / "alpha", '[tools]\nnode = "18"\n')
        write_manifest(tmp_path / "alpha" / "nested", '[tools]\nnode = "20"\n')
        write_manifest(tmp_path / "group" / "beta", '[tools]\npython = "3.12"\n')

        projects = scan_projects(ScanConfig(dirs=[str(tmp_path)], max_depth=3), INSTALLED)

        assert [p.name for p in projects] == ["alpha", "beta"]
        assert all(p.health == HealthStatus.HEALTHY for p in projects)

    def test_skips_hidden_and_vendor_dirs(self, tmp_path):
        write_manifest(tmp_path / ".hidden" / "x", '[tools]\nnode = "18"\n')
        write_manifest(tmp_path / "node_modules" / "pkg", '[tools]\nnode = "18"\n')
        write_manifest(tmp_path / "app", '[tools]\nnode = "18"\n')

        projects = scan_projects(ScanConfig(dirs=[str(tmp_path)], max_depth=3), INSTALLED)

        assert [p.name for p in projects] == ["app"]

    def test_depth_limit(self, tmp_path):
        write_manifest(tmp_path / "a" / "b" / "c", '[tools]\nnode = "18"\n')

        assert scan_projects(ScanConfig(dirs=[str(tmp_path)], max_depth=2), INSTALLED) == []
        assert len(scan_projects(ScanConfig(dirs=[str(tmp_path)], max_depth=3), INSTALLED)) == 1

    def test_overlapping_roots_deduplicated(self, tmp_path):
        write_manifest(tmp_path / "app", '[tools]\nnode = "18"\n')
        config = ScanConfig(dirs=[str(tmp_path), str(tmp_path / "app"), str(tmp_path / "missing")])

        projects = scan_projects(config, INSTALLED)

        assert len(projects) == 1
        assert projects[0].path == os.path.abspath(tmp_path / "app")

    def test_unreadable_directory_is_skipped(self, tmp_path, mocker):
        write_manifest(tmp_path / "ok", '[tools]\nnode = "18"\n')
        (tmp_path / "locked").mkdir()
        real_scandir = os.scandir

        def fake_scandir(path):
            if str(path).endswith("locked"):
                raise PermissionError("denied")
            return real_scandir(path)

        mocker.patch("miseboard.scanner.os.scandir", side_effect=fake_scandir)

        projects = scan_projects(ScanConfig(dirs=[str(tmp_path)], max_depth=3), INSTALLED)

        assert [p.name for p in projects] == ["ok"]
