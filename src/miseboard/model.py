"""
Data models and structures for miseboard application state.

This module defines the dataclasses and enums that describe mise resources
and the dashboard state. Used throughout the app for:
  - Type safety and IDE autocomplete
  - Clear separation of data (models) from logic (backend/state/search)
  - Easy pretty-printing for debugging

Data Classes:
  - InstalledTool: One installed version of a tool (`mise ls -J`)
  - RegistryEntry: A tool known to the registry (`mise registry -J`)
  - ConfigFile: A config file in effect (`mise config ls -J`)
  - OutdatedTool: A tool with a newer version available (`mise outdated -J`)
  - MiseTask / EnvVar / MiseSetting: Tasks, environment and settings
  - Project / ProjectToolHealth: Manifest health computed by the scanner
  - EditorState / EditorRow: The inline manifest editor model
  - WizardState / DetectedTool: The bootstrap wizard model
  - CollectionView: One data collection plus its filter/highlight/cursor
  - AppState: Complete application state (all collections + UI state)

Collections are replaced wholesale when fresh data arrives; nothing in here
patches a collection in place.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .popups import Popup


class Tab(Enum):
    TOOLS = "Tools"
    OUTDATED = "Outdated"
    REGISTRY = "Registry"
    TASKS = "Tasks"
    ENVIRONMENT = "Env"
    SETTINGS = "Settings"
    CONFIG = "Config"
    DOCTOR = "Doctor"
    PROJECTS = "Projects"
    BOOTSTRAP = "Bootstrap"

    @property
    def label(self) -> str:
        return self.value

    @property
    def index(self) -> int:
        return list(Tab).index(self)


class Domain(Enum):
    TOOLS = "tools"
    REGISTRY = "registry"
    CONFIGS = "configs"
    DOCTOR = "doctor"
    OUTDATED = "outdated"
    TASKS = "tasks"
    ENV = "env"
    SETTINGS = "settings"
    PROJECTS = "projects"


# Domains fetched from mise on start-up and on every refresh. Projects are
# derived from the tools inventory by the scanner instead.
FETCHED_DOMAINS = [
    Domain.TOOLS,
    Domain.REGISTRY,
    Domain.CONFIGS,
    Domain.DOCTOR,
    Domain.OUTDATED,
    Domain.TASKS,
    Domain.ENV,
    Domain.SETTINGS,
]

TAB_DOMAINS: Dict[Tab, Domain] = {
    Tab.TOOLS: Domain.TOOLS,
    Tab.OUTDATED: Domain.OUTDATED,
    Tab.REGISTRY: Domain.REGISTRY,
    Tab.TASKS: Domain.TASKS,
    Tab.ENVIRONMENT: Domain.ENV,
    Tab.SETTINGS: Domain.SETTINGS,
    Tab.CONFIG: Domain.CONFIGS,
    Tab.DOCTOR: Domain.DOCTOR,
    Tab.PROJECTS: Domain.PROJECTS,
}


class Focus(Enum):
    SIDEBAR = "sidebar"
    CONTENT = "content"


class LoadState(Enum):
    LOADING = "loading"
    LOADED = "loaded"


class HealthStatus(Enum):
    HEALTHY = "healthy"
    OUTDATED = "outdated"
    MISSING = "missing"
    NO_CONFIG = "no_config"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.OUTDATED: 1,
    HealthStatus.MISSING: 2,
    HealthStatus.NO_CONFIG: 3,
}


class DriftState(Enum):
    CHECKING = "checking"
    HEALTHY = "healthy"
    MISSING = "missing"
    UNTRUSTED = "untrusted"
    NO_CONFIG = "no_config"


class RowStatus(Enum):
    UNCHANGED = "unchanged"
    MODIFIED = "modified"
    ADDED = "added"
    DELETED = "deleted"


class EditorTab(Enum):
    TOOLS = "tools"
    ENV = "env"
    TASKS = "tasks"


class WizardStep(Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    REVIEW = "review"
    PREVIEW = "preview"
    WRITING = "writing"


@dataclass
class InstalledTool:
    name: str
    version: str
    active: bool = False
    installed: bool = True
    source: str = ""
    requested_version: str = ""

    @staticmethod
    def from_map(data: Dict[str, List[Dict[str, Any]]]) -> List["InstalledTool"]:
        """Flatten `mise ls -J` output ({tool: [version, ...]}) into rows."""
        tools = []
        for name in sorted(data):
            for v in data[name] or []:
                source = (v.get("source") or {}).get("path", "")
                tools.append(InstalledTool(
                    name=name,
                    version=str(v.get("version", "")),
                    active=bool(v.get("active", False)),
                    installed=bool(v.get("installed", False)),
                    source=source.rsplit("/", 1)[-1],
                    requested_version=v.get("requested_version") or "",
                ))
        return tools


@dataclass
class RegistryEntry:
    short: str
    backends: List[str] = field(default_factory=list)
    description: str = ""
    aliases: List[str] = field(default_factory=list)


@dataclass
class ConfigFile:
    path: str
    tools: List[str] = field(default_factory=list)


@dataclass
class OutdatedTool:
    name: str
    requested: str
    current: str
    latest: str
    source: str = ""


@dataclass
class MiseTask:
    name: str
    description: str = ""
    source: str = ""


@dataclass
class EnvVar:
    name: str
    value: str
    source: str = ""
    tool: str = ""


@dataclass
class MiseSetting:
    key: str
    value: str
    value_type: str = ""


@dataclass
class PruneCandidate:
    tool: str
    version: str = ""

    def label(self) -> str:
        return f"{self.tool}@{self.version}" if self.version else self.tool


@dataclass
class ProjectToolHealth:
    tool: str
    required: str
    installed: str
    status: HealthStatus


@dataclass
class Project:
    name: str
    path: str
    tool_count: int = 0
    health: HealthStatus = HealthStatus.NO_CONFIG
    tools: List[ProjectToolHealth] = field(default_factory=list)


@dataclass
class DetectedTool:
    name: str
    version: str
    source: str
    enabled: bool = True
    installed: bool = False


@dataclass
class EditorRow:
    """One key/value row of a manifest table (tool=version, NAME=value, task=cmd)."""
    key: str
    value: str
    status: RowStatus = RowStatus.UNCHANGED
    original_key: Optional[str] = None
    prior_status: RowStatus = RowStatus.UNCHANGED  # restored on undelete


@dataclass
class EditorState:
    file_path: str
    raw_document: str
    tools: List[EditorRow] = field(default_factory=list)
    env_vars: List[EditorRow] = field(default_factory=list)
    tasks: List[EditorRow] = field(default_factory=list)
    tab: EditorTab = EditorTab.TOOLS
    selected: int = 0
    editing: bool = False
    edit_column: int = 0
    edit_buffer: str = ""
    dirty: bool = False

    def rows(self, tab: Optional[EditorTab] = None) -> List[EditorRow]:
        tab = tab or self.tab
        if tab == EditorTab.TOOLS:
            return self.tools
        if tab == EditorTab.ENV:
            return self.env_vars
        return self.tasks

    def current_row(self) -> Optional[EditorRow]:
        rows = self.rows()
        if 0 <= self.selected < len(rows):
            return rows[self.selected]
        return None


@dataclass
class WizardState:
    step: WizardStep = WizardStep.IDLE
    directory: str = ""
    detected: List[DetectedTool] = field(default_factory=list)
    selected: int = 0
    preview: str = ""


@dataclass
class CollectionView:
    """A raw collection plus its filtered view, highlight cache and cursor."""
    items: List[Any] = field(default_factory=list)
    load_state: LoadState = LoadState.LOADING
    filtered: List[int] = field(default_factory=list)
    highlights: Optional[List[List[int]]] = None
    selected: int = 0

    def selected_item(self) -> Optional[Any]:
        if 0 <= self.selected < len(self.filtered):
            return self.items[self.filtered[self.selected]]
        return None

    def clamp_selection(self) -> None:
        if not self.filtered:
            self.selected = 0
        else:
            self.selected = max(0, min(self.selected, len(self.filtered) - 1))


def _empty_collections() -> Dict[Domain, CollectionView]:
    return {domain: CollectionView() for domain in Domain}


@dataclass
class AppState:
    collections: Dict[Domain, CollectionView] = field(default_factory=_empty_collections)
    tab: Tab = Tab.TOOLS
    focus: Focus = Focus.CONTENT
    sidebar_selected: int = 0
    search_active: bool = False
    search_query: str = ""
    sort_column: int = 0
    sort_ascending: bool = True
    sort_engaged: bool = False  # set once the user cycles sort on this tab
    popup: Optional["Popup"] = None
    status_message: Optional[str] = None
    status_ttl: int = 0
    spinner_frame: int = 0
    drift_state: DriftState = DriftState.CHECKING
    wizard: WizardState = field(default_factory=WizardState)
    should_quit: bool = False

    def collection(self, domain: Domain) -> CollectionView:
        return self.collections[domain]

    def active_collection(self) -> Optional[CollectionView]:
        domain = TAB_DOMAINS.get(self.tab)
        return self.collections[domain] if domain else None
