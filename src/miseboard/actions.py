"""
The Action vocabulary.

Every event the store can process is one of the frozen dataclasses below:
key presses mapped by the UI, completions posted by the dispatcher and the
periodic Tick. ``Action`` is the closed union of all of them; the reducer in
state.py handles it with a single ``match`` statement.
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .model import (
    ConfigFile, DetectedTool, Domain, DriftState, EditorState, EnvVar,
    InstalledTool, MiseSetting, MiseTask, OutdatedTool, Project,
    PruneCandidate, RegistryEntry,
)
from .popups import Request


# --- Navigation -------------------------------------------------------------

@dataclass(frozen=True)
class Quit:
    pass


@dataclass(frozen=True)
class MoveUp:
    pass


@dataclass(frozen=True)
class MoveDown:
    pass


@dataclass(frozen=True)
class PageUp:
    pass


@dataclass(frozen=True)
class PageDown:
    pass


@dataclass(frozen=True)
class NextTab:
    pass


@dataclass(frozen=True)
class PrevTab:
    pass


@dataclass(frozen=True)
class SelectTab:
    index: int


@dataclass(frozen=True)
class FocusSidebar:
    pass


@dataclass(frozen=True)
class FocusContent:
    pass


# --- Search -----------------------------------------------------------------

@dataclass(frozen=True)
class EnterSearch:
    pass


@dataclass(frozen=True)
class ExitSearch:
    pass


@dataclass(frozen=True)
class SearchInput:
    char: str


@dataclass(frozen=True)
class SearchBackspace:
    pass


# --- Data loaded ------------------------------------------------------------

@dataclass(frozen=True)
class ToolsLoaded:
    tools: Tuple[InstalledTool, ...]


@dataclass(frozen=True)
class RegistryLoaded:
    entries: Tuple[RegistryEntry, ...]


@dataclass(frozen=True)
class ConfigsLoaded:
    configs: Tuple[ConfigFile, ...]


@dataclass(frozen=True)
class DoctorLoaded:
    lines: Tuple[str, ...]


@dataclass(frozen=True)
class OutdatedLoaded:
    outdated: Tuple[OutdatedTool, ...]


@dataclass(frozen=True)
class TasksLoaded:
    tasks: Tuple[MiseTask, ...]


@dataclass(frozen=True)
class EnvLoaded:
    env_vars: Tuple[EnvVar, ...]


@dataclass(frozen=True)
class SettingsLoaded:
    settings: Tuple[MiseSetting, ...]


@dataclass(frozen=True)
class ProjectsLoaded:
    projects: Tuple[Project, ...]


# --- Request-correlated completions ----------------------------------------

@dataclass(frozen=True)
class VersionsLoaded:
    versions: Tuple[str, ...]
    request: Request


@dataclass(frozen=True)
class ToolDetailLoaded:
    info: str
    request: Request


@dataclass(frozen=True)
class PruneLoaded:
    candidates: Tuple[PruneCandidate, ...]
    request: Request


@dataclass(frozen=True)
class EditorLoaded:
    state: EditorState
    request: Request


@dataclass(frozen=True)
class EditorWriteComplete:
    message: str
    request: Request


@dataclass(frozen=True)
class WizardDetected:
    tools: Tuple[DetectedTool, ...]
    request: Request


@dataclass(frozen=True)
class WizardCompleted:
    message: str
    request: Request


@dataclass(frozen=True)
class DriftChecked:
    state: DriftState


# --- Operations -------------------------------------------------------------

@dataclass(frozen=True)
class InstallTool:
    pass


@dataclass(frozen=True)
class UseTool:
    pass


@dataclass(frozen=True)
class UninstallTool:
    pass


@dataclass(frozen=True)
class UpdateTool:
    pass


@dataclass(frozen=True)
class UpgradeAll:
    pass


@dataclass(frozen=True)
class RunTask:
    pass


@dataclass(frozen=True)
class PruneTool:
    pass


@dataclass(frozen=True)
class TrustConfig:
    pass


@dataclass(frozen=True)
class ShowToolDetail:
    pass


@dataclass(frozen=True)
class InstallProjectTools:
    path: str


@dataclass(frozen=True)
class UpdateProjectPins:
    path: str


@dataclass(frozen=True)
class Refresh:
    pass


@dataclass(frozen=True)
class CycleSortOrder:
    pass


@dataclass(frozen=True)
class CheckDrift:
    pass


@dataclass(frozen=True)
class JumpToDriftProject:
    pass


# --- Popups -----------------------------------------------------------------

@dataclass(frozen=True)
class Confirm:
    pass


@dataclass(frozen=True)
class CancelPopup:
    pass


@dataclass(frozen=True)
class ShowHelp:
    pass


@dataclass(frozen=True)
class PopupSearchInput:
    char: str


@dataclass(frozen=True)
class PopupSearchBackspace:
    pass


# --- Inline editor ----------------------------------------------------------

@dataclass(frozen=True)
class OpenEditor:
    path: str


@dataclass(frozen=True)
class EditorSwitchTab:
    pass


@dataclass(frozen=True)
class EditorStartEdit:
    pass


@dataclass(frozen=True)
class EditorConfirmEdit:
    pass


@dataclass(frozen=True)
class EditorCancelEdit:
    pass


@dataclass(frozen=True)
class EditorDeleteRow:
    pass


@dataclass(frozen=True)
class EditorAddTool:
    pass


@dataclass(frozen=True)
class EditorAddEnvVar:
    pass


@dataclass(frozen=True)
class EditorAddTask:
    pass


@dataclass(frozen=True)
class EditorInput:
    char: str


@dataclass(frozen=True)
class EditorBackspace:
    pass


@dataclass(frozen=True)
class EditorWrite:
    pass


@dataclass(frozen=True)
class EditorClose:
    pass


# --- Bootstrap wizard -------------------------------------------------------

@dataclass(frozen=True)
class WizardToggleTool:
    pass


@dataclass(frozen=True)
class WizardNextStep:
    pass


@dataclass(frozen=True)
class WizardPrevStep:
    pass


# --- Status -----------------------------------------------------------------

@dataclass(frozen=True)
class OperationComplete:
    message: str


@dataclass(frozen=True)
class OperationFailed:
    message: str
    domain: Optional[Domain] = None


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class Noop:
    pass


Action = Union[
    Quit, MoveUp, MoveDown, PageUp, PageDown, NextTab, PrevTab, SelectTab,
    FocusSidebar, FocusContent,
    EnterSearch, ExitSearch, SearchInput, SearchBackspace,
    ToolsLoaded, RegistryLoaded, ConfigsLoaded, DoctorLoaded, OutdatedLoaded,
    TasksLoaded, EnvLoaded, SettingsLoaded, ProjectsLoaded,
    VersionsLoaded, ToolDetailLoaded, PruneLoaded, EditorLoaded,
    EditorWriteComplete, WizardDetected, WizardCompleted, DriftChecked,
    InstallTool, UseTool, UninstallTool, UpdateTool, UpgradeAll, RunTask,
    PruneTool, TrustConfig, ShowToolDetail, InstallProjectTools,
    UpdateProjectPins, Refresh, CycleSortOrder, CheckDrift, JumpToDriftProject,
    Confirm, CancelPopup, ShowHelp, PopupSearchInput, PopupSearchBackspace,
    OpenEditor, EditorSwitchTab, EditorStartEdit, EditorConfirmEdit,
    EditorCancelEdit, EditorDeleteRow, EditorAddTool, EditorAddEnvVar,
    EditorAddTask, EditorInput, EditorBackspace, EditorWrite, EditorClose,
    WizardToggleTool, WizardNextStep, WizardPrevStep,
    OperationComplete, OperationFailed, Tick, Noop,
]
