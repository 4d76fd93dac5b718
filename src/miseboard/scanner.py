"""
Project health scanner.

Walks the configured scan roots looking for ``.mise.toml`` manifests and
cross-references each declared tool requirement against the installed-tool
inventory already held in memory, so the scan itself never shells out to
mise.

A manifest marks a project boundary: once one is found, nothing below that
directory is visited. Unreadable directories are skipped and the walk
carries on with their siblings.
"""

import logging
import os
from typing import Dict, Iterable, List, Tuple

import tomlkit
from tomlkit.exceptions import TOMLKitError

from .config import ScanConfig
from .errors import FilesystemSkip
from .model import HealthStatus, InstalledTool, Project, ProjectToolHealth

logger = logging.getLogger(__name__)

MANIFEST_NAME = ".mise.toml"
SKIP_DIRS = frozenset({"node_modules", "target", "__pycache__", "venv", "dist", "build"})


def build_installed_map(installed_tools: Iterable[InstalledTool]) -> Dict[str, List[str]]:
    """tool name -> every installed version, whether or not it is active."""
    installed: Dict[str, List[str]] = {}
    for tool in installed_tools:
        if tool.installed:
            installed.setdefault(tool.name, []).append(tool.version)
    return installed


def satisfies(installed_version: str, required: str) -> bool:
    # "3.12" is satisfied by "3.12.12" but not by "3.120.0".
    return installed_version == required or installed_version.startswith(f"{required}.")


def tool_status(required: str, versions: List[str]) -> HealthStatus:
    if not versions:
        return HealthStatus.MISSING
    if required == "latest" or any(satisfies(v, required) for v in versions):
        return HealthStatus.HEALTHY
    return HealthStatus.OUTDATED


def parse_tool_requirements(contents: str) -> List[Tuple[str, str]]:
    """
    Extract ``(tool, required_version)`` pairs from a manifest's [tools] table.

    Array requirements use their first element and table requirements their
    ``version`` key. Raises TOMLKitError on malformed TOML.
    """
    data = tomlkit.parse(contents).unwrap()
    tools = data.get("tools")
    if not isinstance(tools, dict):
        return []
    requirements = []
    for name, value in tools.items():
        if isinstance(value, list):
            required = str(value[0]) if value else "?"
        elif isinstance(value, dict):
            required = str(value.get("version", "?"))
        else:
            required = str(value)
        requirements.append((name, required))
    return requirements


def parse_project(directory: str, manifest_path: str, installed: Dict[str, List[str]]) -> Project:
    name = os.path.basename(os.path.normpath(directory)) or directory
    try:
        with open(manifest_path, "r", encoding="utf-8") as f:
            requirements = parse_tool_requirements(f.read())
    except (OSError, UnicodeDecodeError, TOMLKitError) as e:
        logger.debug(f"Unusable manifest {manifest_path}: {e}")
        return Project(name=name, path=directory, tool_count=0, health=HealthStatus.NO_CONFIG)

    worst = HealthStatus.HEALTHY
    healths = []
    for tool, required in requirements:
        versions = installed.get(tool, [])
        status = tool_status(required, versions)
        if status.severity > worst.severity:
            worst = status
        shown = next((v for v in versions if satisfies(v, required)), versions[0] if versions else "")
        healths.append(ProjectToolHealth(tool=tool, required=required, installed=shown, status=status))

    return Project(name=name, path=directory, tool_count=len(requirements), health=worst, tools=healths)


def _child_dirs(directory: str) -> List[str]:
    try:
        with os.scandir(directory) as entries:
            children = [
                entry.path for entry in entries
                if entry.is_dir(follow_symlinks=False)
                and not entry.name.startswith(".")
                and entry.name not in SKIP_DIRS
            ]
    except OSError as e:
        raise FilesystemSkip(f"{directory}: {e}") from e
    return sorted(children)


def _collect(directory: str, depth: int, max_depth: int,
             installed: Dict[str, List[str]], projects: List[Project]) -> None:
    manifest = os.path.join(directory, MANIFEST_NAME)
    if os.path.isfile(manifest):
        projects.append(parse_project(directory, manifest, installed))
        return

    if depth >= max_depth:
        return

    try:
        children = _child_dirs(directory)
    except FilesystemSkip as skip:
        logger.debug(f"Skipping unreadable directory {skip}")
        return

    for child in children:
        _collect(child, depth + 1, max_depth, installed, projects)


def scan_projects(config: ScanConfig, installed_tools: Iterable[InstalledTool]) -> List[Project]:
    """Scan every root for projects; deduplicated by absolute path, sorted by name."""
    installed = build_installed_map(installed_tools)
    found: List[Project] = []
    for root in config.dirs:
        root = os.path.abspath(os.path.expanduser(root))
        if os.path.isdir(root):
            _collect(root, 0, config.max_depth, installed, found)

    unique: Dict[str, Project] = {}
    for project in found:
        unique.setdefault(project.path, project)
    projects = sorted(unique.values(), key=lambda p: (p.name, p.path))
    logger.info(f"Scanned {len(config.dirs)} roots, found {len(projects)} projects")
    return projects
