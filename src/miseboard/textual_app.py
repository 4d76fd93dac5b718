from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Optional, Sequence

from textual import events
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Header, Static
from rich.text import Text

from . import actions, get_log_path, popups
from .backend import MiseBackend
from .cache import cache_manager
from .config import AppConfig, config_manager
from .dispatcher import ActionBus, Dispatcher
from .model import (
    TAB_DOMAINS, AppState, Domain, DriftState, EditorTab, Focus, HealthStatus,
    LoadState, RowStatus, Tab, WizardStep,
)
from .scanner import MANIFEST_NAME
from .state import StateStore

logger = logging.getLogger(__name__)

SPINNER = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"
HIGHLIGHT_STYLE = "bold yellow"

SPECIAL_KEYS = {
    "up": actions.MoveUp,
    "down": actions.MoveDown,
    "left": actions.FocusSidebar,
    "right": actions.FocusContent,
    "tab": actions.NextTab,
    "shift+tab": actions.PrevTab,
    "pageup": actions.PageUp,
    "pagedown": actions.PageDown,
    "backspace": actions.SearchBackspace,
    "enter": actions.Confirm,
    "escape": actions.CancelPopup,
    "ctrl+c": actions.Quit,
}

NORMAL_CHARS = {
    "q": actions.Quit,
    "j": actions.MoveDown,
    "k": actions.MoveUp,
    "h": actions.FocusSidebar,
    "l": actions.FocusContent,
    "/": actions.EnterSearch,
    "i": actions.InstallTool,
    "u": actions.UpdateTool,
    "d": actions.UninstallTool,
    "v": actions.ShowToolDetail,
    "?": actions.ShowHelp,
    "r": actions.Refresh,
    "U": actions.UseTool,
    "p": actions.PruneTool,
    "t": actions.TrustConfig,
    "s": actions.CycleSortOrder,
    "c": actions.CheckDrift,
    "P": actions.JumpToDriftProject,
}

EDITOR_CHARS = {
    "j": actions.MoveDown,
    "k": actions.MoveUp,
    "e": actions.EditorStartEdit,
    "d": actions.EditorDeleteRow,
    "w": actions.EditorWrite,
    "q": actions.EditorClose,
}

EDITOR_ADD = {
    EditorTab.TOOLS: actions.EditorAddTool,
    EditorTab.ENV: actions.EditorAddEnvVar,
    EditorTab.TASKS: actions.EditorAddTask,
}

WIZARD_CHARS = {
    "j": actions.MoveDown,
    "k": actions.MoveUp,
    " ": actions.WizardToggleTool,
    "n": actions.WizardNextStep,
    "p": actions.WizardPrevStep,
    "q": actions.CancelPopup,
    "Q": actions.CancelPopup,
}

MOVES = (actions.MoveUp, actions.MoveDown, actions.PageUp, actions.PageDown)

HELP_TEXT = """\
Navigation
  j/k, Up/Down     move          PgUp/PgDn   move by 10
  Tab/Shift+Tab    next/prev tab h/l         sidebar / content
  /                search        Esc         close popup / clear search
  s                cycle sort    r           refresh everything

Tools / Registry / Outdated
  i  install (Registry)          U  use globally (Registry) / upgrade all (Outdated)
  u  update selected             d  uninstall (Tools)
  v  tool detail                 p  prune unused versions

Tasks / Config / Projects
  Enter  run task / edit manifest
  t  trust config                e  edit config / project manifest
  i  install project tools       u  update project pins
  c  re-check cwd health         P  jump to cwd project

Editor
  e/Enter edit   a add   d delete/undelete   Tab switch table   w save   q close

Bootstrap
  n/Enter next   p back   space toggle tool   q cancel"""


def setup_logging(config: AppConfig) -> None:
    """Send log records to a rotating file; the terminal belongs to the UI."""
    log_config = config.logging
    handler = RotatingFileHandler(
        log_config.file_path or get_log_path(),
        maxBytes=log_config.max_size_mb * 1024 * 1024,
        backupCount=log_config.backup_count,
    )
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, log_config.level.upper(), logging.INFO))


def map_key(key: str, character: Optional[str]) -> Optional[actions.Action]:
    """Translate a Textual key event into a mode-independent Action."""
    if key in SPECIAL_KEYS:
        return SPECIAL_KEYS[key]()
    if character and character.isprintable():
        return actions.SearchInput(character)
    return None


def _editor_path(state: AppState) -> Optional[str]:
    view = state.active_collection()
    item = view.selected_item() if view else None
    if item is None:
        return None
    if state.tab == Tab.PROJECTS:
        return os.path.join(item.path, MANIFEST_NAME)
    if state.tab == Tab.CONFIG:
        return item.path
    return None


def remap_action(state: AppState, action: actions.Action) -> actions.Action:
    """Apply the key table of the current mode to a base Action."""
    popup = state.popup

    if isinstance(popup, popups.Editor):
        if popup.state.editing:
            match action:
                case actions.SearchInput(char=char):
                    return actions.EditorInput(char)
                case actions.SearchBackspace():
                    return actions.EditorBackspace()
                case actions.Confirm():
                    return actions.EditorConfirmEdit()
                case actions.CancelPopup():
                    return actions.EditorCancelEdit()
            return actions.Noop()
        match action:
            case actions.SearchInput(char="a"):
                return EDITOR_ADD[popup.state.tab]()
            case actions.SearchInput(char=char):
                factory = EDITOR_CHARS.get(char)
                return factory() if factory else actions.Noop()
            case actions.NextTab() | actions.PrevTab():
                return actions.EditorSwitchTab()
            case actions.Confirm():
                return actions.EditorStartEdit()
            case actions.CancelPopup() | actions.Quit():
                return actions.EditorClose()
        return action if isinstance(action, MOVES) else actions.Noop()

    if isinstance(popup, popups.VersionPicker):
        match action:
            case actions.SearchInput(char="j"):
                return actions.MoveDown()
            case actions.SearchInput(char="k"):
                return actions.MoveUp()
            case actions.SearchInput(char=char):
                return actions.PopupSearchInput(char)
            case actions.SearchBackspace():
                return actions.PopupSearchBackspace()
            case actions.Confirm() | actions.CancelPopup() | actions.Quit():
                return action
        return action if isinstance(action, MOVES) else actions.Noop()

    if popup is None and state.tab == Tab.BOOTSTRAP and state.wizard.step != WizardStep.IDLE:
        match action:
            case actions.SearchInput(char=char):
                factory = WIZARD_CHARS.get(char)
                return factory() if factory else actions.Noop()
            case actions.Confirm():
                return actions.WizardNextStep()
            case actions.CancelPopup() | actions.NextTab() | actions.PrevTab() | actions.Quit():
                return action
        return action if isinstance(action, MOVES) else actions.Noop()

    if popup is None and state.search_active:
        match action:
            case actions.SearchInput() | actions.SearchBackspace() | actions.CancelPopup():
                return action
            case actions.Confirm():
                return actions.ExitSearch()
        return action if isinstance(action, MOVES) else actions.Noop()

    match action:
        case actions.SearchInput(char="e"):
            path = _editor_path(state)
            return actions.OpenEditor(path) if path else actions.Noop()
        case actions.SearchInput(char="n") if state.tab == Tab.BOOTSTRAP:
            return actions.WizardNextStep()
        case actions.SearchInput(char=char):
            factory = NORMAL_CHARS.get(char)
            return factory() if factory else actions.Noop()
    return action


def highlight_text(text: str, positions: Sequence[int], base_style: str = "") -> Text:
    """Render ``text`` with the characters at ``positions`` emphasised."""
    rendered = Text(text, style=base_style)
    for pos in positions:
        if 0 <= pos < len(text):
            rendered.stylize(HIGHLIGHT_STYLE, pos, pos + 1)
    return rendered


def _cell(value: str, width: int) -> str:
    if len(value) > width:
        return value[: max(0, width - 1)] + "…"
    return value.ljust(width)


COLUMNS = {
    Domain.TOOLS: (("NAME", 22), ("VERSION", 16), ("ACTIVE", 7), ("SOURCE", 30)),
    Domain.REGISTRY: (("TOOL", 24), ("DESCRIPTION", 60)),
    Domain.CONFIGS: (("PATH", 60), ("TOOLS", 40)),
    Domain.OUTDATED: (("TOOL", 22), ("CURRENT", 14), ("LATEST", 14), ("REQUESTED", 14)),
    Domain.TASKS: (("TASK", 24), ("DESCRIPTION", 44), ("SOURCE", 30)),
    Domain.ENV: (("NAME", 28), ("VALUE", 40), ("SOURCE", 24), ("TOOL", 12)),
    Domain.SETTINGS: (("KEY", 40), ("VALUE", 36), ("TYPE", 10)),
    Domain.PROJECTS: (("PROJECT", 24), ("HEALTH", 10), ("TOOLS", 6), ("PATH", 50)),
}

HEALTH_STYLE = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.OUTDATED: "yellow",
    HealthStatus.MISSING: "red",
    HealthStatus.NO_CONFIG: "dim",
}

DRIFT_LABEL = {
    DriftState.CHECKING: "checking...",
    DriftState.HEALTHY: "healthy",
    DriftState.MISSING: "missing tools",
    DriftState.UNTRUSTED: "untrusted config",
    DriftState.NO_CONFIG: "no local config",
}


def row_cells(domain: Domain, item: Any) -> list[str]:
    if domain == Domain.TOOLS:
        return [item.name, item.version, "*" if item.active else "", item.source]
    if domain == Domain.REGISTRY:
        return [item.short, item.description]
    if domain == Domain.CONFIGS:
        return [item.path, ", ".join(item.tools)]
    if domain == Domain.OUTDATED:
        return [item.name, item.current, item.latest, item.requested]
    if domain == Domain.TASKS:
        return [item.name, item.description, item.source]
    if domain == Domain.ENV:
        return [item.name, item.value, item.source, item.tool]
    if domain == Domain.SETTINGS:
        return [item.key, item.value, item.value_type]
    if domain == Domain.PROJECTS:
        return [item.name, item.health.value, str(item.tool_count), item.path]
    return [str(item)]


class MiseboardApp(App[None]):
    TITLE = "miseboard"
    SUB_TITLE = "mise dashboard"

    CSS = """
    Screen {
      layout: vertical;
    }

    #tabs {
      height: 1;
      padding: 0 1;
      background: $surface;
      color: $text;
    }

    #main {
      height: 1fr;
    }

    #sidebar {
      width: 16;
      height: 1fr;
      border: round $accent;
    }

    #content {
      width: 1fr;
      height: 1fr;
      border: round $accent;
      padding: 0 1;
      overflow: auto;
    }

    #popup {
      height: auto;
      max-height: 60%;
      border: round $accent;
      background: $surface;
      padding: 0 2;
      overflow: auto;
      display: none;
    }

    #popup.open {
      display: block;
    }

    #status {
      height: 1;
      padding: 0 1;
      background: $panel;
      color: $text;
    }
    """

    def __init__(self, config: Optional[AppConfig] = None, gateway: Any = None) -> None:
        super().__init__()
        self.config = config or config_manager.get_config()
        self.gateway = gateway or MiseBackend(
            binary=self.config.mise.binary,
            versions_limit=self.config.mise.versions_limit,
        )
        self.store = StateStore(scan_config=self.config.scan, status_ttl=self.config.ui.status_ttl)
        self.bus: Optional[ActionBus] = None
        self.dispatcher: Optional[Dispatcher] = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Static("", id="tabs")
        yield Vertical(
            Horizontal(
                Static("", id="sidebar"),
                Static("", id="content"),
                id="main",
            ),
            Static("", id="popup"),
        )
        yield Static("", id="status")

    def on_mount(self) -> None:
        self.bus = ActionBus()
        self.dispatcher = Dispatcher(self.gateway, self.bus)
        self.store.start()
        self._drain_commands()
        self.set_interval(self.config.ui.tick_interval, self._tick)
        self.run_worker(self._consume(), group="bus", exclusive=True)
        logger.info("miseboard started")
        self._render()

    def _tick(self) -> None:
        self.bus.put_nowait(actions.Tick())

    def _drain_commands(self) -> None:
        for command in self.store.take_commands():
            self.dispatcher.dispatch(command)

    def _apply(self, action: actions.Action) -> None:
        self.store.handle_action(action)
        self._drain_commands()

    async def _consume(self) -> None:
        while True:
            self._apply(await self.bus.get())
            while not self.bus.empty():
                self._apply(await self.bus.get())
            if self.store.state.should_quit:
                logger.info(f"Quitting (cache: {cache_manager.get_stats()})")
                self.exit()
                return
            self._render()

    async def on_key(self, event: events.Key) -> None:
        base = map_key(event.key, event.character)
        if base is None:
            return
        event.stop()
        event.prevent_default()
        self.bus.put_nowait(remap_action(self.store.state, base))

    def on_click(self, event: events.Click) -> None:
        sidebar = self.query_one("#sidebar", Static)
        offset = event.get_content_offset(sidebar)
        if offset is not None:
            self.bus.put_nowait(actions.SelectTab(offset.y))

    # --- Rendering -----------------------------------------------------------

    def _render(self) -> None:
        state = self.store.state
        self.sub_title = f"cwd: {DRIFT_LABEL[state.drift_state]}"
        self.query_one("#tabs", Static).update(self._render_tabs(state))
        self.query_one("#sidebar", Static).update(self._render_sidebar(state))
        self.query_one("#content", Static).update(self._render_content(state))
        popup_widget = self.query_one("#popup", Static)
        popup_widget.set_class(state.popup is not None, "open")
        if state.popup is not None:
            popup_widget.update(self._render_popup(state.popup))
        self.query_one("#status", Static).update(self._render_status(state))

    def _render_tabs(self, state: AppState) -> Text:
        text = Text()
        for tab in Tab:
            style = "reverse bold" if tab == state.tab else ""
            text.append(f" {tab.label} ", style=style)
        return text

    def _render_sidebar(self, state: AppState) -> Text:
        text = Text()
        for tab in Tab:
            domain = TAB_DOMAINS.get(tab)
            loading = domain is not None and state.collection(domain).load_state == LoadState.LOADING
            marker = SPINNER[state.spinner_frame] if loading else " "
            style = ""
            if tab == state.tab:
                style = "reverse" if state.focus == Focus.SIDEBAR else "bold"
            text.append(f"{marker} {tab.label}\n", style=style)
        return text

    def _visible_rows(self) -> int:
        return max(1, self.query_one("#content", Static).size.height - 2)

    def _render_content(self, state: AppState) -> Text:
        if state.tab == Tab.BOOTSTRAP:
            return self._render_wizard(state)
        domain = TAB_DOMAINS[state.tab]
        view = state.collection(domain)
        if view.load_state == LoadState.LOADING and not view.items:
            return Text(f"{SPINNER[state.spinner_frame]} Loading {state.tab.label.lower()}...")
        if domain == Domain.DOCTOR:
            lines = [view.items[i] for i in view.filtered[view.selected:]]
            return Text("\n".join(lines) or "(no output)")

        columns = COLUMNS[domain]
        text = Text()
        for position, (title, width) in enumerate(columns):
            if position == state.sort_column and state.sort_engaged:
                title += " ▲" if state.sort_ascending else " ▼"
            text.append(_cell(title, width) + " ", style="bold")
        text.append("\n")

        if not view.filtered:
            text.append("(no matches)" if state.search_query else "(empty)", style="dim")
            return text

        height = self._visible_rows() - 1
        start = max(0, view.selected - height + 1)
        for position in range(start, min(len(view.filtered), start + height)):
            item = view.items[view.filtered[position]]
            selected = position == view.selected
            base = "reverse" if selected and state.focus == Focus.CONTENT else ""
            spans = view.highlights[position] if view.highlights is not None else []
            for column, (value, (_, width)) in enumerate(zip(row_cells(domain, item), columns)):
                cell = _cell(value, width)
                style = base
                if domain == Domain.PROJECTS and column == 1:
                    style = f"{base} {HEALTH_STYLE[item.health]}".strip()
                if column == 0:
                    text.append_text(highlight_text(cell, [p for p in spans if p < width], style))
                else:
                    text.append(cell, style=style)
                text.append(" ", style=base)
            text.append("\n")

        if domain == Domain.PROJECTS:
            project = view.selected_item()
            if project is not None and project.tools:
                text.append("\n")
                for health in project.tools:
                    text.append(f"  {health.tool:<16} {health.required:<12} {health.installed or '-':<14} ")
                    text.append(health.status.value, style=HEALTH_STYLE[health.status])
                    text.append("\n")
        return text

    def _render_wizard(self, state: AppState) -> Text:
        wizard = state.wizard
        if wizard.step in (WizardStep.IDLE, WizardStep.DETECTING):
            return Text(f"Bootstrap a {MANIFEST_NAME} for {self.store.cwd}\n\nPress n or Enter to detect tools.")
        if wizard.step == WizardStep.REVIEW:
            text = Text("Detected tools (space toggles, n continues, p goes back)\n\n", style="bold")
            for i, tool in enumerate(wizard.detected):
                box = "[x]" if tool.enabled else "[ ]"
                installed = "installed" if tool.installed else "not installed"
                style = "reverse" if i == wizard.selected else ""
                text.append(f"{box} {tool.name:<10} {tool.version:<12} {tool.source:<18} {installed}\n", style=style)
            return text
        text = Text(f"Preview of {os.path.join(wizard.directory, MANIFEST_NAME)} (n writes, p goes back)\n\n",
                    style="bold")
        text.append(wizard.preview)
        return text

    def _render_popup(self, popup: popups.Popup) -> Text:
        match popup:
            case popups.VersionPicker():
                verb = "Use globally" if popup.mode == popups.PickerMode.SET_GLOBAL else "Install"
                text = Text(f"{verb} {popup.tool}  filter: {popup.search}\n\n", style="bold")
                start = max(0, popup.selected - 14)
                for position in range(start, min(len(popup.filtered), start + 15)):
                    style = "reverse" if position == popup.selected else ""
                    text.append(popup.versions[popup.filtered[position]] + "\n", style=style)
                if not popup.filtered:
                    text.append("(no matching versions)", style="dim")
                return text
            case popups.Confirm():
                return Text(f"{popup.message}\n\nEnter to confirm, Esc to cancel")
            case popups.Progress():
                return Text(f"{SPINNER[self.store.state.spinner_frame]} {popup.message}")
            case popups.Detail():
                lines = popup.text.splitlines()[popup.scroll:popup.scroll + 20]
                return Text(f"{popup.title}\n\n", style="bold") + Text("\n".join(lines))
            case popups.Help():
                return Text(HELP_TEXT)
            case popups.Editor():
                return self._render_editor(popup)
        return Text("")

    def _render_editor(self, popup: popups.Editor) -> Text:
        es = popup.state
        text = Text(f"{es.file_path}{' *' if es.dirty else ''}\n", style="bold")
        for tab in EditorTab:
            text.append(f" [{tab.value}] " if tab == es.tab else f"  {tab.value}  ",
                        style="reverse" if tab == es.tab else "")
        text.append("\n\n")
        styles = {
            RowStatus.MODIFIED: "yellow",
            RowStatus.ADDED: "green",
            RowStatus.DELETED: "strike dim",
            RowStatus.UNCHANGED: "",
        }
        for i, row in enumerate(es.rows()):
            key, value = row.key, row.value
            if es.editing and i == es.selected:
                if es.edit_column == 0:
                    key = es.edit_buffer + "▏"
                else:
                    value = es.edit_buffer + "▏"
            style = styles[row.status]
            if i == es.selected:
                style = f"{style} reverse".strip()
            text.append(f"{_cell(key, 24)} = {value}\n", style=style)
        if not es.rows():
            text.append("(empty, press a to add)", style="dim")
        return text

    def _render_status(self, state: AppState) -> Text:
        if state.search_active:
            return Text(f"/{state.search_query}▏")
        if state.status_message:
            return Text(state.status_message)
        hint = "? help  / search  r refresh  q quit"
        if state.search_query:
            hint = f"filter: {state.search_query}  (Esc clears)  " + hint
        return Text(hint, style="dim")


def run() -> None:
    config = config_manager.get_config()
    setup_logging(config)
    app = MiseboardApp(config)
    app.run()
