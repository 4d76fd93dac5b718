"""
mise CLI wrapper and backend operations.

This module provides a high-level interface to the ``mise`` binary. Every
public method of MiseBackend runs one blocking subprocess (or a file
operation on a manifest) and returns plain model objects:
  - Fetching resources (installed tools, registry, configs, doctor output,
    outdated tools, tasks, environment, settings, remote versions)
  - Tool actions (install, uninstall, upgrade, global use, run task, prune,
    trust)
  - Project helpers (cwd drift check, install / upgrade inside a project,
    manifest editing, bootstrap detection and writing)

Methods are called from worker threads by the dispatcher, never from the UI
loop.

Error Handling:
  - mise missing / not executable → GatewayError
  - Non-zero exit status → GatewayError with mise's stderr
  - Malformed JSON or TOML → ParseError
Failures are logged here once and re-raised; the dispatcher turns them into
an OperationFailed action.

Dependencies:
  - subprocess (mise invocation)
  - tomlkit (via manifest.py / scanner.py)
"""

import functools
import json
import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from tomlkit.exceptions import TOMLKitError

from . import manifest
from .cache import cached
from .config import ScanConfig
from .errors import GatewayError, MiseError, ParseError
from .model import (
    ConfigFile, DetectedTool, DriftState, EditorState, EnvVar, InstalledTool,
    MiseSetting, MiseTask, OutdatedTool, Project, PruneCandidate, RegistryEntry,
)
from .scanner import build_installed_map, scan_projects

logger = logging.getLogger(__name__)


def mise_call(func: Callable) -> Callable:
    """
    Decorator for gateway methods that normalises and logs failures.

    Anything that goes wrong is logged with its traceback and re-raised as a
    MiseError subclass, so callers only ever need to handle one family of
    exceptions.

    Usage:
        @mise_call
        def fetch_tools(self) -> List[InstalledTool]:
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except MiseError as e:
            logger.error(f"mise operation failed in {func.__name__}: {e}", exc_info=True)
            raise
        except (json.JSONDecodeError, TOMLKitError) as e:
            logger.error(f"Parse error in {func.__name__}: {e}", exc_info=True)
            raise ParseError(f"Parse error: {e}") from e
        except OSError as e:
            logger.error(f"I/O error in {func.__name__}: {e}", exc_info=True)
            raise GatewayError(str(e)) from e
    return wrapper


def _global_config_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "mise" / "config.toml"


def _setting_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, list):
        return "array"
    if value is None:
        return "null"
    return "string"


def flatten_settings(data: Dict[str, Any], prefix: str = "") -> List[MiseSetting]:
    """Turn nested settings JSON into dotted ``key = value`` rows."""
    settings = []
    for key in sorted(data):
        value = data[key]
        full_key = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            settings.extend(flatten_settings(value, full_key))
            continue
        if isinstance(value, str):
            shown = value
        else:
            shown = json.dumps(value)
        settings.append(MiseSetting(key=full_key, value=shown, value_type=_setting_type(value)))
    return settings


def parse_prune_output(output: str) -> List[PruneCandidate]:
    """Parse ``mise prune --dry-run`` lines ("node@18.0.0" or "node 18.0.0")."""
    candidates = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        if "@" in line:
            tool, version = line.split("@", 1)
        elif " " in line:
            tool, version = line.split(" ", 1)
        else:
            tool, version = line, ""
        candidates.append(PruneCandidate(tool=tool.strip(), version=version.strip()))
    return candidates


class MiseBackend:
    def __init__(self, binary: str = "mise", versions_limit: int = 50):
        self.binary = binary
        self.versions_limit = versions_limit

    def run_mise(self, args: Sequence[str], cwd: Optional[str] = None,
                 check: bool = True) -> str:
        """Run mise with ``args`` and return stdout."""
        cmd = [self.binary, *args]
        logger.debug(f"Running {' '.join(cmd)} (cwd={cwd or '.'})")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, cwd=cwd)
        except OSError as e:
            raise GatewayError(f"Failed to run mise: {e}") from e
        if check and result.returncode != 0:
            raise GatewayError(f"mise {' '.join(args)} failed: {result.stderr.strip()}")
        return result.stdout

    def _json(self, args: Sequence[str], cwd: Optional[str] = None) -> Any:
        return json.loads(self.run_mise(args, cwd=cwd) or "null")

    def _installed_tools(self) -> List[InstalledTool]:
        return InstalledTool.from_map(self._json(["ls", "-J"]) or {})

    # --- Collections ---------------------------------------------------------

    @mise_call
    def fetch_tools(self) -> List[InstalledTool]:
        return self._installed_tools()

    @mise_call
    @cached(key_prefix="registry")
    def fetch_registry(self) -> List[RegistryEntry]:
        entries = self._json(["registry", "-J"]) or []
        return [
            RegistryEntry(
                short=e["short"],
                backends=list(e.get("backends") or []),
                description=e.get("description") or "",
                aliases=list(e.get("aliases") or []),
            )
            for e in entries
        ]

    @mise_call
    def fetch_configs(self) -> List[ConfigFile]:
        configs = self._json(["config", "ls", "-J"]) or []
        return [ConfigFile(path=c["path"], tools=list(c.get("tools") or [])) for c in configs]

    @mise_call
    def fetch_doctor(self) -> List[str]:
        # doctor exits non-zero when it finds problems; the report is still on stdout
        return self.run_mise(["doctor"], check=False).splitlines()

    @mise_call
    def fetch_outdated(self) -> List[OutdatedTool]:
        data = self._json(["outdated", "-J"]) or {}
        outdated = []
        for name in sorted(data):
            entry = data[name] or {}
            outdated.append(OutdatedTool(
                name=entry.get("name") or name,
                requested=str(entry.get("requested") or ""),
                current=str(entry.get("current") or ""),
                latest=str(entry.get("latest") or ""),
                source=(entry.get("source") or {}).get("path", ""),
            ))
        return outdated

    @mise_call
    def fetch_tasks(self) -> List[MiseTask]:
        tasks = self._json(["tasks", "ls", "-J"]) or []
        return [
            MiseTask(
                name=t["name"],
                description=t.get("description") or "",
                source=t.get("source") or "",
            )
            for t in tasks
        ]

    @mise_call
    def fetch_env(self) -> List[EnvVar]:
        data = self._json(["env", "--json-extended"]) or {}
        env_vars = []
        for name in sorted(data):
            entry = data[name]
            if isinstance(entry, dict):
                env_vars.append(EnvVar(
                    name=name,
                    value=str(entry.get("value", "")),
                    source=entry.get("source") or "",
                    tool=entry.get("tool") or "",
                ))
            else:
                env_vars.append(EnvVar(name=name, value=str(entry)))
        return env_vars

    @mise_call
    def fetch_settings(self) -> List[MiseSetting]:
        data = self._json(["settings", "ls", "-J", "--all"]) or {}
        if not isinstance(data, dict):
            raise ParseError("Unexpected settings output")
        return flatten_settings(data)

    @mise_call
    @cached(key_prefix="versions")
    def fetch_versions(self, tool: str) -> List[str]:
        """Remote versions of ``tool``, newest first."""
        lines = [line.strip() for line in self.run_mise(["ls-remote", tool]).splitlines()]
        versions = [v for v in reversed(lines) if v]
        return versions[:self.versions_limit]

    @mise_call
    def fetch_tool_info(self, tool: str) -> str:
        return json.dumps(self._json(["tool", tool, "-J"]), indent=2)

    # --- Tool actions --------------------------------------------------------

    @mise_call
    def install_tool(self, tool: str, version: str) -> str:
        self.run_mise(["install", f"{tool}@{version}"])
        return f"Installed {tool}@{version}"

    @mise_call
    def uninstall_tool(self, tool: str, version: str) -> str:
        self.run_mise(["uninstall", f"{tool}@{version}"])
        return f"Uninstalled {tool}@{version}"

    @mise_call
    def upgrade_tool(self, tool: str) -> str:
        self.run_mise(["upgrade", tool])
        return f"Upgraded {tool}"

    @mise_call
    def upgrade_all(self) -> str:
        self.run_mise(["upgrade"])
        return "Upgraded all tools"

    @mise_call
    def run_task(self, task: str) -> str:
        self.run_mise(["run", task])
        return f"Task '{task}' completed"

    @mise_call
    def use_tool_global(self, tool: str, version: str) -> str:
        self.run_mise(["use", "--global", f"{tool}@{version}"])
        return f"Now using {tool}@{version}"

    @mise_call
    def prune_dry_run(self) -> List[PruneCandidate]:
        return parse_prune_output(self.run_mise(["prune", "--dry-run"], check=False))

    @mise_call
    def prune(self) -> str:
        self.run_mise(["prune", "-y"])
        return "Pruned unused tool versions"

    @mise_call
    def trust_config(self, path: str) -> str:
        self.run_mise(["trust", path])
        return f"Trusted {path}"

    # --- Projects ------------------------------------------------------------

    @mise_call
    def check_cwd_drift(self, cwd: str) -> DriftState:
        """
        Health of the directory the dashboard was started in.

        NO_CONFIG when only the global config applies, UNTRUSTED when a local
        config has not been trusted, MISSING when a tool pinned by a local
        config is not installed, HEALTHY otherwise.
        """
        try:
            configs = self._json(["config", "ls", "--json"], cwd=cwd) or []
        except GatewayError as e:
            return DriftState.UNTRUSTED if "not trusted" in str(e) else DriftState.NO_CONFIG

        global_config = str(_global_config_path())
        local_paths = {c["path"] for c in configs if c.get("path") and c["path"] != global_config}
        if not local_paths:
            return DriftState.NO_CONFIG

        try:
            tools = self._json(["ls", "--current", "--json"], cwd=cwd) or {}
        except GatewayError as e:
            if "not trusted" in str(e):
                return DriftState.UNTRUSTED
            raise

        for versions in tools.values():
            for entry in versions or []:
                source = (entry.get("source") or {}).get("path")
                if source in local_paths and entry.get("installed") is False:
                    return DriftState.MISSING
        return DriftState.HEALTHY

    @mise_call
    def install_project_tools(self, path: str) -> str:
        self.run_mise(["install"], cwd=path)
        return f"Installed tools in {path}"

    @mise_call
    def update_project_pins(self, path: str) -> str:
        self.run_mise(["upgrade"], cwd=path)
        return f"Updated tool pins in {path}"

    @mise_call
    def scan_projects(self, config: ScanConfig, tools: Sequence[InstalledTool]) -> List[Project]:
        return scan_projects(config, tools)

    @mise_call
    def load_manifest(self, path: str) -> EditorState:
        return manifest.parse_manifest(path)

    @mise_call
    def save_manifest(self, state: EditorState) -> str:
        return manifest.write_editor_changes(state)

    @mise_call
    def detect_tools(self, directory: str) -> List[DetectedTool]:
        installed = build_installed_map(self._installed_tools())
        return manifest.detect_project_tools(directory, installed)

    @mise_call
    def write_manifest(self, directory: str, tools: Sequence[Tuple[str, str]]) -> str:
        return manifest.write_new_manifest(directory, tools)
