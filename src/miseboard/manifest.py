"""
.mise.toml reading and writing.

The inline editor loads a manifest into an ``EditorState`` (one row per
[tools] / [env] / [tasks] entry) and keeps the original document text. On
save only rows tagged MODIFIED, ADDED or DELETED are applied to that
original document through tomlkit, so comments, ordering and formatting of
everything else survive the round trip.

Writes go to a temporary file in the same directory which then replaces the
target, so a reader never sees a half-written manifest.

The bootstrap helpers at the bottom guess a project's tools from well-known
files (package.json, Cargo.toml, .python-version, .tool-versions, ...).
"""

import logging
import os
import stat
import tempfile
from collections.abc import MutableMapping
from typing import Dict, List, Optional, Sequence, Tuple

import tomlkit
from tomlkit.exceptions import TOMLKitError

from .errors import ParseError
from .model import DetectedTool, EditorRow, EditorState, EditorTab, RowStatus
from .scanner import MANIFEST_NAME, satisfies

logger = logging.getLogger(__name__)

SECTIONS = {
    EditorTab.TOOLS: "tools",
    EditorTab.ENV: "env",
    EditorTab.TASKS: "tasks",
}


def _target_mode(path: str) -> int:
    """Mode of the existing file, or what a plain open() would create."""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def atomic_write(path: str, content: str) -> None:
    """Write ``content`` to ``path`` via a temp file and os.replace."""
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(prefix=".mise.toml.", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(tmp_path, _target_mode(path))
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def _parse(text: str, origin: str) -> tomlkit.TOMLDocument:
    try:
        return tomlkit.parse(text)
    except TOMLKitError as e:
        raise ParseError(f"Failed to parse TOML in {origin}: {e}") from e


def _tool_version(value) -> str:
    if isinstance(value, list):
        return str(value[0]) if value else "?"
    if isinstance(value, dict):
        return str(value.get("version", "?"))
    return str(value)


def _task_command(value) -> str:
    if isinstance(value, dict):
        run = value.get("run", "")
        return " && ".join(run) if isinstance(run, list) else str(run)
    return str(value)


def _rows(table, convert) -> List[EditorRow]:
    if not isinstance(table, dict):
        return []
    return [EditorRow(key=k, value=convert(v), original_key=k) for k, v in table.items()]


def parse_manifest(path: str) -> EditorState:
    """Load ``path`` into an EditorState. OSError propagates to the caller."""
    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()
    data = _parse(raw, path).unwrap()
    return EditorState(
        file_path=path,
        raw_document=raw,
        tools=_rows(data.get("tools"), _tool_version),
        env_vars=_rows(data.get("env"), str),
        tasks=_rows(data.get("tasks"), _task_command),
    )


def _section(doc: tomlkit.TOMLDocument, name: str):
    if name not in doc:
        doc.add(name, tomlkit.table())
    table = doc[name]
    if not isinstance(table, MutableMapping):
        raise ParseError(f"[{name}] is not a table")
    return table


def _apply_rows(doc: tomlkit.TOMLDocument, tab: EditorTab, rows: Sequence[EditorRow]) -> None:
    changed = [r for r in rows if r.status != RowStatus.UNCHANGED]
    if not changed:
        return
    table = _section(doc, SECTIONS[tab])

    for row in changed:
        if row.status == RowStatus.DELETED and row.original_key in table:
            del table[row.original_key]

    for row in changed:
        if row.status == RowStatus.MODIFIED:
            if row.original_key and row.original_key != row.key and row.original_key in table:
                del table[row.original_key]
            existing = table.get(row.key)
            if tab == EditorTab.TASKS and isinstance(existing, MutableMapping):
                existing["run"] = row.value
            else:
                table[row.key] = row.value
        elif row.status == RowStatus.ADDED:
            table[row.key] = row.value


def render_changes(state: EditorState) -> str:
    """Apply the tagged rows of ``state`` to its original document text."""
    doc = _parse(state.raw_document, state.file_path)
    for tab in EditorTab:
        _apply_rows(doc, tab, state.rows(tab))
    return tomlkit.dumps(doc)


def write_editor_changes(state: EditorState) -> str:
    content = render_changes(state)
    atomic_write(state.file_path, content)
    logger.info(f"Wrote editor changes to {state.file_path}")
    return f"Saved {state.file_path}"


# --- Bootstrap --------------------------------------------------------------

def _first_line(path: str) -> Optional[str]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#"):
                    return line
    except OSError:
        return None
    return None


def migrate_legacy_pins(directory: str) -> List[DetectedTool]:
    """Read ``.tool-versions`` (``tool version`` per line) in ``directory``."""
    path = os.path.join(directory, ".tool-versions")
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.readlines()
    except OSError:
        return []
    tools = []
    for line in lines:
        parts = line.split()
        if not parts or parts[0].startswith("#"):
            continue
        version = parts[1] if len(parts) > 1 else "latest"
        tools.append(DetectedTool(name=parts[0], version=version, source=".tool-versions"))
    return tools


def detect_project_tools(directory: str, installed: Dict[str, List[str]]) -> List[DetectedTool]:
    """
    Guess the tools a project needs from files in ``directory``.

    Indicator files win over ``.tool-versions``; version files (.nvmrc,
    .python-version, .ruby-version) win over the indicator's default.
    ``installed`` maps tool name to installed versions and is used to mark
    tools that are already satisfied.
    """
    def exists(name: str) -> bool:
        return os.path.exists(os.path.join(directory, name))

    def pinned(name: str) -> Optional[str]:
        return _first_line(os.path.join(directory, name)) if exists(name) else None

    nvmrc = pinned(".nvmrc")
    python_version = pinned(".python-version")
    ruby_version = pinned(".ruby-version")

    tools: Dict[str, DetectedTool] = {t.name: t for t in migrate_legacy_pins(directory)}

    def add(name: str, version: str, source: str) -> None:
        tools[name] = DetectedTool(name=name, version=version, source=source)

    if exists("package.json"):
        add("node", *((nvmrc, ".nvmrc") if nvmrc else ("lts", "package.json")))
    if exists("Cargo.toml"):
        add("rust", "stable", "Cargo.toml")
    if exists("pyproject.toml") or exists("requirements.txt"):
        src = "pyproject.toml" if exists("pyproject.toml") else "requirements.txt"
        add("python", *((python_version, ".python-version") if python_version else ("latest", src)))
    if exists("go.mod"):
        add("go", "latest", "go.mod")
    if exists("Gemfile"):
        add("ruby", *((ruby_version, ".ruby-version") if ruby_version else ("latest", "Gemfile")))
    if exists("composer.json"):
        add("php", "latest", "composer.json")

    for name, version, source in (("node", nvmrc, ".nvmrc"),
                                  ("python", python_version, ".python-version"),
                                  ("ruby", ruby_version, ".ruby-version")):
        if version and name not in tools:
            add(name, version, source)

    for tool in tools.values():
        versions = installed.get(tool.name, [])
        tool.installed = bool(versions) and (
            tool.version in ("latest", "stable", "lts")
            or any(satisfies(v, tool.version) for v in versions)
        )

    return sorted(tools.values(), key=lambda t: t.name)


def render_manifest(tools: Sequence[Tuple[str, str]]) -> str:
    doc = tomlkit.document()
    table = tomlkit.table()
    for name, version in tools:
        table.add(name, version or "latest")
    doc.add("tools", table)
    return tomlkit.dumps(doc)


def write_new_manifest(directory: str, tools: Sequence[Tuple[str, str]]) -> str:
    path = os.path.join(directory, MANIFEST_NAME)
    atomic_write(path, render_manifest(tools))
    logger.info(f"Wrote {len(tools)} tools to {path}")
    return f"Wrote {path}"
