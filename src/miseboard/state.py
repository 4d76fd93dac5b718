"""
Application state management.

This module holds the StateStore, the one and only mutator of AppState.

Architecture:
  - StateStore.handle_action(action): a single ``match`` over the Action
    union. Every arm either changes UI state, replaces a collection and
    recomputes its filter/sort, moves the popup state machine, or requests
    a background Command.
  - Commands are not run here. They are appended to ``self.commands`` and the
    runtime drains them with take_commands() after every step.
  - Each Progress popup carries a Request token. A completion is applied only
    while that same Progress popup is still showing; anything else is stale
    and dropped.

Concurrency:
  - handle_action is synchronous and must never be entered twice at once;
    re-entry raises RuntimeError. Internal redirections (Enter dispatching
    ShowToolDetail, Outdated "U" running UpgradeAll, ...) call _reduce
    directly.
  - Command arguments are copies (tuples, deep-copied editor state) so worker
    threads never share mutable objects with the store.
"""

import copy
import logging
import os
from typing import Any, Callable, List, Optional

from . import actions, popups
from .cache import cache_manager
from .config import ScanConfig
from .dispatcher import Command
from .manifest import render_manifest
from .model import (
    FETCHED_DOMAINS, TAB_DOMAINS, AppState, Domain, DriftState,
    EditorRow, EditorTab, Focus, LoadState, RowStatus, Tab, WizardState,
    WizardStep,
)
from .popups import PickerMode, Request, RequestKind
from .scanner import MANIFEST_NAME
from .search import COLLECTION_SPECS, column_count, filter_collection, filter_versions, sort_filtered

logger = logging.getLogger(__name__)

STATUS_TTL = 20
REFRESH_STATUS_TTL = 10
SPINNER_FRAMES = 10
PAGE_SIZE = 10
PRUNE_PREVIEW = 5

TABS = list(Tab)
EDITOR_TABS = list(EditorTab)

FETCHES = {
    Domain.TOOLS: ("fetch_tools", lambda r: actions.ToolsLoaded(tuple(r))),
    Domain.REGISTRY: ("fetch_registry", lambda r: actions.RegistryLoaded(tuple(r))),
    Domain.CONFIGS: ("fetch_configs", lambda r: actions.ConfigsLoaded(tuple(r))),
    Domain.DOCTOR: ("fetch_doctor", lambda r: actions.DoctorLoaded(tuple(r))),
    Domain.OUTDATED: ("fetch_outdated", lambda r: actions.OutdatedLoaded(tuple(r))),
    Domain.TASKS: ("fetch_tasks", lambda r: actions.TasksLoaded(tuple(r))),
    Domain.ENV: ("fetch_env", lambda r: actions.EnvLoaded(tuple(r))),
    Domain.SETTINGS: ("fetch_settings", lambda r: actions.SettingsLoaded(tuple(r))),
}


def _clamp(value: int, length: int) -> int:
    if length <= 0:
        return 0
    return max(0, min(value, length - 1))


class StateStore:
    """Reducer owning the AppState."""

    def __init__(self, cwd: Optional[str] = None, scan_config: Optional[ScanConfig] = None,
                 status_ttl: int = STATUS_TTL):
        self.state = AppState()
        self.commands: List[Command] = []
        self.cwd = os.path.abspath(cwd or os.getcwd())
        self.scan_config = scan_config or ScanConfig()
        self.status_ttl = status_ttl
        self._next_request_id = 0
        self._handling = False

    # --- Runtime interface ---------------------------------------------------

    def start(self) -> None:
        """Queue the initial fetch of every collection and the drift check."""
        self._start_fetch()
        self._check_drift()

    def take_commands(self) -> List[Command]:
        commands, self.commands = self.commands, []
        return commands

    def handle_action(self, action: actions.Action) -> None:
        if self._handling:
            raise RuntimeError(f"StateStore re-entered while handling {action!r}")
        self._handling = True
        try:
            self._reduce(action)
        finally:
            self._handling = False

    # --- Helpers -------------------------------------------------------------

    def _request(self, kind: RequestKind, subject: str = "",
                 mode: Optional[PickerMode] = None) -> Request:
        self._next_request_id += 1
        return Request(id=self._next_request_id, kind=kind, subject=subject, mode=mode)

    def _submit(self, operation: str, args: tuple, on_success: Callable[[Any], actions.Action],
                domain: Optional[Domain] = None,
                on_failure: Optional[Callable[[str], actions.Action]] = None) -> None:
        self.commands.append(Command(operation, args, on_success, domain, on_failure))

    def _progress(self, message: str, kind: RequestKind, operation: str, args: tuple,
                  on_success: Callable[[Any, Request], actions.Action], subject: str = "",
                  mode: Optional[PickerMode] = None) -> None:
        request = self._request(kind, subject, mode)
        self.state.popup = popups.Progress(message, request)
        self._submit(operation, args, lambda result: on_success(result, request))

    def _operation(self, message: str, operation: str, *args: Any) -> None:
        """Progress popup for a mutating mise call that ends in OperationComplete."""
        self._progress(message, RequestKind.OPERATION, operation, args,
                       lambda result, _request: actions.OperationComplete(result))

    def _set_status(self, message: str, ttl: Optional[int] = None) -> None:
        self.state.status_message = message
        self.state.status_ttl = self.status_ttl if ttl is None else ttl

    def _is_current(self, request: Request) -> bool:
        popup = self.state.popup
        if isinstance(popup, popups.Progress) and popup.request == request:
            return True
        logger.debug(f"Dropping stale completion for request {request.id} ({request.kind.value})")
        return False

    def _start_fetch(self) -> None:
        for domain in FETCHED_DOMAINS:
            operation, on_success = FETCHES[domain]
            self._submit(operation, (), on_success, domain=domain)

    def _check_drift(self) -> None:
        self.state.drift_state = DriftState.CHECKING
        self._submit("check_cwd_drift", (self.cwd,), actions.DriftChecked,
                     on_failure=lambda _message: actions.DriftChecked(DriftState.NO_CONFIG))

    def _refresh_after_change(self) -> None:
        self._start_fetch()
        self._check_drift()

    def _active_domain(self) -> Optional[Domain]:
        return TAB_DOMAINS.get(self.state.tab)

    def _selected(self, tab: Tab) -> Optional[Any]:
        if self.state.tab != tab:
            return None
        view = self.state.active_collection()
        return view.selected_item() if view else None

    # --- Filter / sort -------------------------------------------------------

    def _recompute(self, domain: Domain) -> None:
        state = self.state
        view = state.collection(domain)
        spec = COLLECTION_SPECS[domain]
        filtered, highlights = filter_collection(view.items, state.search_query, spec)
        if state.sort_engaged and domain == self._active_domain():
            filtered, highlights = sort_filtered(
                view.items, filtered, highlights, spec, state.sort_column, state.sort_ascending
            )
        view.filtered = filtered
        view.highlights = highlights
        view.clamp_selection()

    def _recompute_all(self) -> None:
        for domain in Domain:
            self._recompute(domain)

    def _on_query_changed(self) -> None:
        self._recompute_all()
        view = self.state.active_collection()
        if view is not None:
            view.selected = 0

    def _load(self, domain: Domain, items) -> None:
        view = self.state.collection(domain)
        view.items = list(items)
        view.load_state = LoadState.LOADED
        self._recompute(domain)

    # --- Navigation ----------------------------------------------------------

    def _set_tab(self, tab: Tab) -> None:
        state = self.state
        previous = self._active_domain()
        was_sorted = state.sort_engaged
        state.tab = tab
        state.sidebar_selected = tab.index
        state.sort_column = 0
        state.sort_ascending = True
        state.sort_engaged = False
        if was_sorted and previous is not None:
            self._recompute(previous)

    def _cycle_tab(self, delta: int) -> None:
        self._set_tab(TABS[(self.state.tab.index + delta) % len(TABS)])

    def _move(self, delta: int) -> None:
        state = self.state
        popup = state.popup
        if popup is not None:
            if isinstance(popup, popups.VersionPicker):
                popup.selected = _clamp(popup.selected + delta, len(popup.filtered))
            elif isinstance(popup, popups.Detail):
                popup.scroll = _clamp(popup.scroll + delta, len(popup.text.splitlines()))
            elif isinstance(popup, popups.Editor) and not popup.state.editing:
                es = popup.state
                es.selected = _clamp(es.selected + delta, len(es.rows()))
            return

        if state.focus == Focus.SIDEBAR:
            self._set_tab(TABS[_clamp(state.sidebar_selected + delta, len(TABS))])
            return

        if state.tab == Tab.BOOTSTRAP:
            wizard = state.wizard
            if wizard.step == WizardStep.REVIEW:
                wizard.selected = _clamp(wizard.selected + delta, len(wizard.detected))
            return

        view = state.active_collection()
        if view is not None:
            view.selected = _clamp(view.selected + delta, len(view.filtered))

    # --- Reducer -------------------------------------------------------------

    def _reduce(self, action: actions.Action) -> None:
        state = self.state
        match action:
            case actions.Quit():
                if state.popup is not None:
                    self._cancel_popup()
                elif state.search_active:
                    self._clear_search()
                else:
                    state.should_quit = True

            case actions.MoveUp():
                self._move(-1)
            case actions.MoveDown():
                self._move(1)
            case actions.PageUp():
                self._move(-PAGE_SIZE)
            case actions.PageDown():
                self._move(PAGE_SIZE)
            case actions.NextTab():
                if state.popup is None:
                    self._cycle_tab(1)
            case actions.PrevTab():
                if state.popup is None:
                    self._cycle_tab(-1)
            case actions.SelectTab(index=index):
                if state.popup is None and 0 <= index < len(TABS):
                    self._set_tab(TABS[index])
            case actions.FocusSidebar():
                state.focus = Focus.SIDEBAR
                state.sidebar_selected = state.tab.index
            case actions.FocusContent():
                state.focus = Focus.CONTENT

            case actions.EnterSearch():
                if state.popup is None:
                    state.search_active = True
                    state.search_query = ""
                    self._on_query_changed()
            case actions.ExitSearch():
                state.search_active = False
            case actions.SearchInput(char=char):
                if state.search_active:
                    state.search_query += char
                    self._on_query_changed()
            case actions.SearchBackspace():
                if state.search_active and state.search_query:
                    state.search_query = state.search_query[:-1]
                    self._on_query_changed()

            case actions.ToolsLoaded(tools=tools):
                self._load(Domain.TOOLS, tools)
                state.collection(Domain.PROJECTS).load_state = LoadState.LOADING
                self._submit("scan_projects", (copy.deepcopy(self.scan_config), tools),
                             lambda r: actions.ProjectsLoaded(tuple(r)), domain=Domain.PROJECTS)
            case actions.RegistryLoaded(entries=entries):
                self._load(Domain.REGISTRY, entries)
            case actions.ConfigsLoaded(configs=configs):
                self._load(Domain.CONFIGS, configs)
            case actions.DoctorLoaded(lines=lines):
                self._load(Domain.DOCTOR, lines)
            case actions.OutdatedLoaded(outdated=outdated):
                self._load(Domain.OUTDATED, outdated)
            case actions.TasksLoaded(tasks=tasks):
                self._load(Domain.TASKS, tasks)
            case actions.EnvLoaded(env_vars=env_vars):
                self._load(Domain.ENV, env_vars)
            case actions.SettingsLoaded(settings=settings):
                self._load(Domain.SETTINGS, settings)
            case actions.ProjectsLoaded(projects=projects):
                self._load(Domain.PROJECTS, projects)

            case actions.VersionsLoaded(versions=versions, request=request):
                if self._is_current(request):
                    if versions:
                        state.popup = popups.VersionPicker(
                            tool=request.subject,
                            versions=list(versions),
                            mode=request.mode or PickerMode.INSTALL,
                            filtered=list(range(len(versions))),
                        )
                    else:
                        state.popup = None
                        self._set_status("No versions found")
            case actions.ToolDetailLoaded(info=info, request=request):
                if self._is_current(request):
                    state.popup = popups.Detail(title=request.subject, text=info)
            case actions.PruneLoaded(candidates=candidates, request=request):
                if self._is_current(request):
                    self._prune_loaded(candidates)
            case actions.EditorLoaded(state=editor_state, request=request):
                if self._is_current(request):
                    state.popup = popups.Editor(editor_state)
            case actions.EditorWriteComplete(message=message, request=request):
                if self._is_current(request):
                    state.popup = None
                    self._set_status(message)
                    self._refresh_after_change()
            case actions.WizardDetected(tools=tools, request=request):
                if self._is_current(request):
                    state.popup = None
                    if tools:
                        state.wizard.step = WizardStep.REVIEW
                        state.wizard.detected = list(tools)
                        state.wizard.selected = 0
                    else:
                        state.wizard = WizardState()
                        self._set_status("No tools detected")
            case actions.WizardCompleted(message=message, request=request):
                if self._is_current(request):
                    state.popup = None
                    state.wizard = WizardState()
                    self._set_status(message)
                    self._refresh_after_change()
            case actions.DriftChecked(state=drift):
                state.drift_state = drift

            case actions.InstallTool():
                if state.popup is None:
                    self._install_tool()
            case actions.UseTool():
                if state.popup is None:
                    if state.tab == Tab.REGISTRY:
                        self._open_picker(PickerMode.SET_GLOBAL)
                    elif state.tab == Tab.OUTDATED:
                        self._reduce(actions.UpgradeAll())
            case actions.UninstallTool():
                tool = self._selected(Tab.TOOLS)
                if state.popup is None and tool is not None:
                    state.popup = popups.Confirm(
                        f"Uninstall {tool.name}@{tool.version}?",
                        popups.Uninstall(tool.name, tool.version),
                    )
            case actions.UpdateTool():
                if state.popup is None:
                    self._update_tool()
            case actions.UpgradeAll():
                if state.popup is None and state.tab == Tab.OUTDATED:
                    self._operation("Upgrading all tools...", "upgrade_all")
            case actions.RunTask():
                task = self._selected(Tab.TASKS)
                if state.popup is None and task is not None:
                    state.popup = popups.Confirm(f"Run task '{task.name}'?", popups.RunTask(task.name))
            case actions.PruneTool():
                if state.popup is None:
                    self._progress("Checking for unused versions...", RequestKind.PRUNE_CHECK,
                                   "prune_dry_run", (),
                                   lambda r, req: actions.PruneLoaded(tuple(r), req))
            case actions.TrustConfig():
                config = self._selected(Tab.CONFIG)
                if state.popup is None and config is not None:
                    state.popup = popups.Confirm(f"Trust config: {config.path}?",
                                                 popups.TrustConfig(config.path))
            case actions.ShowToolDetail():
                tool = self._selected(Tab.TOOLS)
                if state.popup is None and tool is not None:
                    self._progress(f"Fetching info for {tool.name}...", RequestKind.TOOL_DETAIL,
                                   "fetch_tool_info", (tool.name,),
                                   lambda r, req: actions.ToolDetailLoaded(r, req),
                                   subject=tool.name)
            case actions.InstallProjectTools(path=path):
                if state.popup is None:
                    self._operation(f"Installing tools in {path}...", "install_project_tools", path)
            case actions.UpdateProjectPins(path=path):
                if state.popup is None:
                    self._operation(f"Updating tool pins in {path}...", "update_project_pins", path)
            case actions.Refresh():
                for domain in FETCHED_DOMAINS:
                    state.collection(domain).load_state = LoadState.LOADING
                self._set_status("Refreshing...", REFRESH_STATUS_TTL)
                cache_manager.invalidate()
                self._start_fetch()
            case actions.CycleSortOrder():
                if state.popup is None:
                    self._cycle_sort()
            case actions.CheckDrift():
                self._check_drift()
            case actions.JumpToDriftProject():
                if state.popup is None:
                    self._jump_to_cwd_project()

            case actions.Confirm():
                self._confirm()
            case actions.CancelPopup():
                if state.popup is not None:
                    self._cancel_popup()
                elif state.search_active or state.search_query:
                    self._clear_search()
                elif state.tab == Tab.BOOTSTRAP and state.wizard.step != WizardStep.IDLE:
                    state.wizard = WizardState()
            case actions.ShowHelp():
                if state.popup is None:
                    state.popup = popups.Help()
            case actions.PopupSearchInput(char=char):
                self._picker_search(lambda query: query + char)
            case actions.PopupSearchBackspace():
                self._picker_search(lambda query: query[:-1])

            case actions.OpenEditor(path=path):
                if state.popup is None:
                    self._progress(f"Loading {path}...", RequestKind.EDITOR_LOAD,
                                   "load_manifest", (path,),
                                   lambda r, req: actions.EditorLoaded(r, req), subject=path)
            case (actions.EditorSwitchTab() | actions.EditorStartEdit() | actions.EditorConfirmEdit()
                  | actions.EditorCancelEdit() | actions.EditorDeleteRow() | actions.EditorAddTool()
                  | actions.EditorAddEnvVar() | actions.EditorAddTask() | actions.EditorInput()
                  | actions.EditorBackspace() | actions.EditorWrite() | actions.EditorClose()):
                if isinstance(state.popup, popups.Editor):
                    self._editor(action, state.popup)

            case actions.WizardToggleTool():
                wizard = state.wizard
                if state.tab == Tab.BOOTSTRAP and wizard.step == WizardStep.REVIEW and wizard.detected:
                    tool = wizard.detected[wizard.selected]
                    tool.enabled = not tool.enabled
            case actions.WizardNextStep():
                if state.tab == Tab.BOOTSTRAP and state.popup is None:
                    self._wizard_next()
            case actions.WizardPrevStep():
                wizard = state.wizard
                if state.tab == Tab.BOOTSTRAP and state.popup is None:
                    if wizard.step == WizardStep.REVIEW:
                        state.wizard = WizardState()
                    elif wizard.step == WizardStep.PREVIEW:
                        wizard.step = WizardStep.REVIEW

            case actions.OperationComplete(message=message):
                state.popup = None
                self._set_status(message)
                self._refresh_after_change()
            case actions.OperationFailed(message=message, domain=domain):
                state.popup = None
                self._set_status(f"Error: {message}")
                if domain is not None:
                    state.collection(domain).load_state = LoadState.LOADED
                self._unwind_wizard()

            case actions.Tick():
                state.spinner_frame = (state.spinner_frame + 1) % SPINNER_FRAMES
                if state.status_message is not None:
                    state.status_ttl -= 1
                    if state.status_ttl <= 0:
                        state.status_message = None
                        state.status_ttl = 0

            case actions.Noop():
                pass
            case _:
                logger.debug(f"Ignoring unknown action {action!r}")

    # --- Arms too long to inline --------------------------------------------

    def _clear_search(self) -> None:
        self.state.search_active = False
        if self.state.search_query:
            self.state.search_query = ""
            self._recompute_all()

    def _cancel_popup(self) -> None:
        self.state.popup = None
        self._unwind_wizard()

    def _unwind_wizard(self) -> None:
        wizard = self.state.wizard
        if wizard.step == WizardStep.DETECTING:
            self.state.wizard = WizardState()
        elif wizard.step == WizardStep.WRITING:
            wizard.step = WizardStep.PREVIEW

    def _open_picker(self, mode: PickerMode) -> None:
        entry = self._selected(Tab.REGISTRY)
        if entry is None:
            return
        self._progress(f"Fetching versions for {entry.short}...", RequestKind.VERSIONS,
                       "fetch_versions", (entry.short,),
                       lambda r, req: actions.VersionsLoaded(tuple(r), req),
                       subject=entry.short, mode=mode)

    def _install_tool(self) -> None:
        if self.state.tab == Tab.REGISTRY:
            self._open_picker(PickerMode.INSTALL)
        elif self.state.tab == Tab.PROJECTS:
            project = self._selected(Tab.PROJECTS)
            if project is not None:
                self._reduce(actions.InstallProjectTools(project.path))

    def _update_tool(self) -> None:
        tab = self.state.tab
        if tab == Tab.TOOLS:
            tool = self._selected(Tab.TOOLS)
            if tool is not None:
                self._operation(f"Updating {tool.name}...", "upgrade_tool", tool.name)
        elif tab == Tab.OUTDATED:
            tool = self._selected(Tab.OUTDATED)
            if tool is not None:
                self._operation(f"Upgrading {tool.name}...", "upgrade_tool", tool.name)
        elif tab == Tab.PROJECTS:
            project = self._selected(Tab.PROJECTS)
            if project is not None:
                self._reduce(actions.UpdateProjectPins(project.path))

    def _prune_loaded(self, candidates) -> None:
        if not candidates:
            self.state.popup = None
            self._set_status("No unused tool versions to prune")
            return
        names = ", ".join(c.label() for c in candidates[:PRUNE_PREVIEW])
        more = ", ..." if len(candidates) > PRUNE_PREVIEW else ""
        self.state.popup = popups.Confirm(
            f"Prune {len(candidates)} versions? ({names}{more})", popups.Prune()
        )

    def _cycle_sort(self) -> None:
        state = self.state
        domain = self._active_domain()
        columns = column_count(domain)
        if not columns:
            return
        if state.sort_ascending:
            state.sort_ascending = False
        else:
            state.sort_ascending = True
            state.sort_column = (state.sort_column + 1) % columns
        state.sort_engaged = True
        self._recompute(domain)

    def _jump_to_cwd_project(self) -> None:
        self._set_tab(Tab.PROJECTS)
        self.state.focus = Focus.CONTENT
        view = self.state.collection(Domain.PROJECTS)
        for position, index in enumerate(view.filtered):
            if os.path.abspath(view.items[index].path) == self.cwd:
                view.selected = position
                return
        self._set_status("Current directory is not a scanned project")

    def _picker_search(self, edit: Callable[[str], str]) -> None:
        picker = self.state.popup
        if not isinstance(picker, popups.VersionPicker):
            return
        picker.search = edit(picker.search)
        picker.filtered = filter_versions(picker.versions, picker.search)
        picker.selected = 0

    def _confirm(self) -> None:
        state = self.state
        popup = state.popup
        match popup:
            case popups.VersionPicker():
                version = popup.chosen_version()
                if version is None:
                    return
                if popup.mode == PickerMode.SET_GLOBAL:
                    self._operation(f"Setting {popup.tool}@{version} as global...",
                                    "use_tool_global", popup.tool, version)
                else:
                    self._operation(f"Installing {popup.tool}@{version}...",
                                    "install_tool", popup.tool, version)
            case popups.Confirm(action_on_confirm=payload):
                self._run_confirmed(payload)
            case popups.Detail() | popups.Help():
                state.popup = None
            case popups.Editor(state=editor_state):
                if editor_state.editing:
                    self._editor(actions.EditorConfirmEdit(), popup)
                else:
                    self._editor(actions.EditorStartEdit(), popup)
            case popups.Progress():
                pass
            case None:
                if state.search_active:
                    state.search_active = False
                    return
                if state.tab == Tab.TOOLS:
                    self._reduce(actions.ShowToolDetail())
                elif state.tab == Tab.TASKS:
                    self._reduce(actions.RunTask())
                elif state.tab == Tab.PROJECTS:
                    project = self._selected(Tab.PROJECTS)
                    if project is not None:
                        self._reduce(actions.OpenEditor(os.path.join(project.path, MANIFEST_NAME)))
                elif state.tab == Tab.BOOTSTRAP:
                    self._wizard_next()

    def _run_confirmed(self, payload: popups.ConfirmAction) -> None:
        match payload:
            case popups.Uninstall(tool=tool, version=version):
                self._operation(f"Uninstalling {tool}@{version}...", "uninstall_tool", tool, version)
            case popups.Prune():
                self._operation("Pruning unused versions...", "prune")
            case popups.TrustConfig(path=path):
                self._operation(f"Trusting {path}...", "trust_config", path)
            case popups.RunTask(task=task):
                self._operation(f"Running task '{task}'...", "run_task", task)

    # --- Inline editor -------------------------------------------------------

    def _editor(self, action: actions.Action, popup: popups.Editor) -> None:
        es = popup.state
        row = es.current_row()
        match action:
            case actions.EditorSwitchTab():
                if not es.editing:
                    es.tab = EDITOR_TABS[(EDITOR_TABS.index(es.tab) + 1) % len(EDITOR_TABS)]
                    es.selected = 0
            case actions.EditorStartEdit():
                if not es.editing and row is not None and row.status != RowStatus.DELETED:
                    es.editing = True
                    es.edit_column = 0
                    es.edit_buffer = row.key
            case actions.EditorConfirmEdit():
                if es.editing and row is not None:
                    self._editor_commit(es, row)
            case actions.EditorCancelEdit():
                if es.editing:
                    es.editing = False
                    es.edit_buffer = ""
                    if row is not None and row.status == RowStatus.ADDED and not row.key:
                        es.rows().remove(row)
                        es.selected = _clamp(es.selected, len(es.rows()))
            case actions.EditorDeleteRow():
                if not es.editing and row is not None:
                    if row.status == RowStatus.ADDED:
                        es.rows().remove(row)
                        es.selected = _clamp(es.selected, len(es.rows()))
                    elif row.status == RowStatus.DELETED:
                        row.status = row.prior_status
                    else:
                        row.prior_status = row.status
                        row.status = RowStatus.DELETED
                    self._editor_mark_dirty(es)
            case actions.EditorAddTool():
                self._editor_add(es, EditorTab.TOOLS)
            case actions.EditorAddEnvVar():
                self._editor_add(es, EditorTab.ENV)
            case actions.EditorAddTask():
                self._editor_add(es, EditorTab.TASKS)
            case actions.EditorInput(char=char):
                if es.editing:
                    es.edit_buffer += char
            case actions.EditorBackspace():
                if es.editing:
                    es.edit_buffer = es.edit_buffer[:-1]
            case actions.EditorWrite():
                if es.editing:
                    return
                if not es.dirty:
                    self._set_status("No changes to save")
                    return
                path = es.file_path
                self._progress(f"Saving {path}...", RequestKind.EDITOR_WRITE,
                               "save_manifest", (copy.deepcopy(es),),
                               lambda r, req: actions.EditorWriteComplete(r, req), subject=path)
            case actions.EditorClose():
                if es.editing:
                    return
                self.state.popup = None
                if es.dirty:
                    self._set_status(f"Discarded unsaved changes to {es.file_path}")

    def _editor_commit(self, es, row: EditorRow) -> None:
        text = es.edit_buffer.strip()
        if es.edit_column == 0:
            if not text:
                self._set_status("Name cannot be empty")
                return
            clash = any(other is not row and other.key == text and other.status != RowStatus.DELETED
                        for other in es.rows())
            if clash:
                self._set_status(f"{text} already exists")
                return
            if text != row.key:
                row.key = text
                if row.status == RowStatus.UNCHANGED:
                    row.status = RowStatus.MODIFIED
            es.edit_column = 1
            es.edit_buffer = row.value
            self._editor_mark_dirty(es)
            return

        if es.edit_buffer != row.value:
            row.value = es.edit_buffer
            if row.status == RowStatus.UNCHANGED:
                row.status = RowStatus.MODIFIED
        es.editing = False
        es.edit_column = 0
        es.edit_buffer = ""
        self._editor_mark_dirty(es)

    def _editor_add(self, es, tab: EditorTab) -> None:
        if es.editing:
            return
        es.tab = tab
        rows = es.rows()
        rows.append(EditorRow(key="", value="latest" if tab == EditorTab.TOOLS else "",
                              status=RowStatus.ADDED))
        es.selected = len(rows) - 1
        es.editing = True
        es.edit_column = 0
        es.edit_buffer = ""

    @staticmethod
    def _editor_mark_dirty(es) -> None:
        es.dirty = any(row.status != RowStatus.UNCHANGED
                       for tab in EditorTab for row in es.rows(tab))

    # --- Bootstrap wizard ----------------------------------------------------

    def _wizard_next(self) -> None:
        wizard = self.state.wizard
        if wizard.step == WizardStep.IDLE:
            wizard.step = WizardStep.DETECTING
            wizard.directory = self.cwd
            self._progress("Detecting project tools...", RequestKind.WIZARD_DETECT,
                           "detect_tools", (self.cwd,),
                           lambda r, req: actions.WizardDetected(tuple(r), req),
                           subject=self.cwd)
        elif wizard.step == WizardStep.REVIEW:
            enabled = [(t.name, t.version) for t in wizard.detected if t.enabled]
            if not enabled:
                self._set_status("Select at least one tool")
                return
            wizard.preview = render_manifest(enabled)
            wizard.step = WizardStep.PREVIEW
        elif wizard.step == WizardStep.PREVIEW:
            enabled = tuple((t.name, t.version) for t in wizard.detected if t.enabled)
            wizard.step = WizardStep.WRITING
            self._progress(f"Writing {MANIFEST_NAME}...", RequestKind.WIZARD_WRITE,
                           "write_manifest", (wizard.directory, enabled),
                           lambda r, req: actions.WizardCompleted(r, req),
                           subject=wizard.directory)
