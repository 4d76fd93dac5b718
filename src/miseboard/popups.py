"""
Modal popup variants.

``AppState.popup`` holds at most one of the classes below (or None). Every
variant is its own dataclass, so "one popup at a time" is a property of the
single slot rather than a convention across optional fields.

A ``Progress`` popup remembers the ``Request`` that opened it. Completion
actions carry the same request back, and the store only applies a completion
when the visible popup is the Progress popup for that exact request.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from .model import EditorState


class RequestKind(Enum):
    VERSIONS = "versions"
    TOOL_DETAIL = "tool_detail"
    PRUNE_CHECK = "prune_check"
    EDITOR_LOAD = "editor_load"
    EDITOR_WRITE = "editor_write"
    WIZARD_DETECT = "wizard_detect"
    WIZARD_WRITE = "wizard_write"
    OPERATION = "operation"


class PickerMode(Enum):
    INSTALL = "install"
    SET_GLOBAL = "set_global"


@dataclass(frozen=True)
class Request:
    """Correlation token threaded from a dispatched command to its completion."""
    id: int
    kind: RequestKind
    subject: str = ""
    mode: Optional[PickerMode] = None


# --- Confirm payloads -------------------------------------------------------

@dataclass(frozen=True)
class Uninstall:
    tool: str
    version: str


@dataclass(frozen=True)
class Prune:
    pass


@dataclass(frozen=True)
class TrustConfig:
    path: str


@dataclass(frozen=True)
class RunTask:
    task: str


ConfirmAction = Union[Uninstall, Prune, TrustConfig, RunTask]


# --- Popups -----------------------------------------------------------------

@dataclass
class VersionPicker:
    tool: str
    versions: List[str]
    mode: PickerMode = PickerMode.INSTALL
    selected: int = 0
    search: str = ""
    filtered: List[int] = field(default_factory=list)

    def chosen_version(self) -> Optional[str]:
        if 0 <= self.selected < len(self.filtered):
            return self.versions[self.filtered[self.selected]]
        return None


@dataclass
class Confirm:
    message: str
    action_on_confirm: ConfirmAction


@dataclass
class Progress:
    message: str
    request: Optional[Request] = None


@dataclass
class Detail:
    title: str
    text: str
    scroll: int = 0


@dataclass
class Editor:
    state: EditorState


@dataclass
class Help:
    pass


Popup = Union[VersionPicker, Confirm, Progress, Detail, Editor, Help]
