import pytest

from miseboard import actions, popups
from miseboard.model import (
    ConfigFile, DetectedTool, Domain, DriftState, EditorRow, EditorState, EnvVar,
    Focus, HealthStatus, InstalledTool, LoadState, MiseTask, Project,
    PruneCandidate, RegistryEntry, RowStatus, Tab, WizardStep,
)
from miseboard.popups import PickerMode, Request, RequestKind
from miseboard.state import StateStore

CWD = "/work/app"


@pytest.fixture
def store():
    return StateStore(cwd=CWD)


def ops(commands):
    return [c.operation for c in commands]


def complete(store, result):
    """Run the single queued command's success callback and feed it back."""
    commands = store.take_commands()
    assert len(commands) == 1
    store.handle_action(commands[0].on_success(result))


def load_tools(store, *tools):
    store.handle_action(actions.ToolsLoaded(tuple(tools)))
    store.take_commands()


def select_tab(store, tab):
    store.handle_action(actions.SelectTab(tab.index))


class TestLifecycle:
    def test_start_fetches_everything_and_checks_drift(self, store):
        store.start()
        commands = store.take_commands()

        assert ops(commands) == [
            "fetch_tools", "fetch_registry", "fetch_configs", "fetch_doctor",
            "fetch_outdated", "fetch_tasks", "fetch_env", "fetch_settings",
            "check_cwd_drift",
        ]
        assert commands[-1].args == (CWD,)
        assert store.state.drift_state == DriftState.CHECKING
        assert store.take_commands() == []

    def test_drift_failure_reads_as_no_config(self, store):
        store.start()
        drift = store.take_commands()[-1]

        store.handle_action(drift.on_failure("mise exploded"))

        assert store.state.drift_state == DriftState.NO_CONFIG

    def test_tools_loaded_triggers_project_scan(self, store):
        tools = (InstalledTool("node", "20.0.0"),)
        store.handle_action(actions.ToolsLoaded(tools))

        commands = store.take_commands()
        assert ops(commands) == ["scan_projects"]
        assert commands[0].args[1] == tools
        assert commands[0].domain == Domain.PROJECTS
        assert store.state.collection(Domain.TOOLS).load_state == LoadState.LOADED
        assert store.state.collection(Domain.PROJECTS).load_state == LoadState.LOADING

    def test_refresh(self, store, mocker):
        cache = mocker.patch("miseboard.state.cache_manager")
        store.handle_action(actions.TasksLoaded((MiseTask("build"),)))

        store.handle_action(actions.Refresh())

        assert store.state.collection(Domain.TASKS).load_state == LoadState.LOADING
        assert store.state.status_message == "Refreshing..."
        assert store.state.status_ttl == 10
        assert len(store.take_commands()) == 8
        cache.invalidate.assert_called_once_with()

    def test_operation_failed_marks_domain_loaded(self, store):
        store.handle_action(actions.Refresh())
        store.take_commands()

        store.handle_action(actions.OperationFailed("boom", Domain.TASKS))

        assert store.state.collection(Domain.TASKS).load_state == LoadState.LOADED
        assert store.state.collection(Domain.ENV).load_state == LoadState.LOADING
        assert store.state.status_message == "Error: boom"

    def test_tick_expires_status(self, store):
        store.handle_action(actions.Refresh())
        for _ in range(9):
            store.handle_action(actions.Tick())
        assert store.state.status_message == "Refreshing..."

        store.handle_action(actions.Tick())

        assert store.state.status_message is None
        assert store.state.spinner_frame == 0

    def test_reentry_is_rejected(self, store, mocker):
        mocker.patch.object(store, "_reduce", side_effect=lambda a: store.handle_action(a))

        with pytest.raises(RuntimeError):
            store.handle_action(actions.Tick())
        assert store._handling is False

    def test_quit_order(self, store):
        store.handle_action(actions.ShowHelp())
        store.handle_action(actions.Quit())
        assert store.state.popup is None
        assert not store.state.should_quit

        store.handle_action(actions.EnterSearch())
        store.handle_action(actions.Quit())
        assert not store.state.search_active
        assert not store.state.should_quit

        store.handle_action(actions.Quit())
        assert store.state.should_quit


OPEN_POPUPS = {
    "version_picker": lambda: popups.VersionPicker(tool="node", versions=["20"], filtered=[0]),
    "confirm": lambda: popups.Confirm("Uninstall node@20?", popups.Uninstall("node", "20")),
    "progress": lambda: popups.Progress("Working...", Request(7, RequestKind.OPERATION)),
    "detail": lambda: popups.Detail("node", "{}"),
    "editor": lambda: popups.Editor(editor_state()),
    "help": lambda: popups.Help(),
}


@pytest.mark.parametrize("completion", [
    actions.OperationComplete("Installed node@20"),
    actions.OperationFailed("boom"),
    actions.OperationFailed("fetch failed", Domain.TASKS),
], ids=["complete", "failed", "failed_fetch"])
@pytest.mark.parametrize("name", list(OPEN_POPUPS))
def test_operation_result_closes_any_popup(store, name, completion):
    store.state.popup = OPEN_POPUPS[name]()

    store.handle_action(completion)

    assert store.state.popup is None


class TestNavigationAndSearch:
    def tools(self):
        return (
            InstalledTool("node", "20.0.0"),
            InstalledTool("go", "1.22.0"),
            InstalledTool("python", "3.12.1"),
        )

    def test_selection_clamps(self, store):
        load_tools(store, *self.tools())
        store.handle_action(actions.PageDown())
        assert store.state.collection(Domain.TOOLS).selected == 2
        store.handle_action(actions.MoveUp())
        store.handle_action(actions.PageUp())
        assert store.state.collection(Domain.TOOLS).selected == 0

    def test_cursor_stays_in_range_through_mixed_sequence(self, store):
        many_tools = tuple(InstalledTool(f"tool{i}", f"1.{i}.0") for i in range(25))
        entries = tuple(RegistryEntry(f"pkg{i}") for i in range(15))
        env_vars = tuple(EnvVar(f"VAR{i}", str(i)) for i in range(12))
        steps = [
            actions.ToolsLoaded(many_tools),
            actions.PageDown(), actions.PageDown(), actions.MoveDown(),
            actions.EnterSearch(), actions.SearchInput("1"), actions.PageDown(),
            actions.SearchInput("9"), actions.MoveDown(),
            actions.SearchBackspace(), actions.SearchBackspace(),
            actions.ExitSearch(), actions.PageDown(),
            actions.ToolsLoaded(many_tools[:3]), actions.MoveDown(),
            actions.ToolsLoaded(()), actions.MoveUp(),
            actions.SelectTab(Tab.REGISTRY.index),
            actions.RegistryLoaded(entries), actions.PageDown(), actions.PageDown(),
            actions.EnterSearch(), actions.SearchInput("x"), actions.MoveDown(),
            actions.SearchBackspace(), actions.RegistryLoaded(entries[:2]), actions.PageDown(),
            actions.ExitSearch(),
            actions.NextTab(), actions.SelectTab(Tab.ENVIRONMENT.index),
            actions.EnvLoaded(env_vars), actions.PageDown(), actions.PageDown(),
            actions.EnvLoaded(env_vars[:1]), actions.PageUp(),
            actions.EnvLoaded(()), actions.MoveDown(),
            actions.PrevTab(), actions.MoveDown(), actions.SelectTab(Tab.TOOLS.index),
        ]

        for action in steps:
            store.handle_action(action)
            store.take_commands()
            for domain in Domain:
                view = store.state.collection(domain)
                if view.filtered:
                    assert 0 <= view.selected < len(view.filtered), (action, domain)
                else:
                    assert view.selected == 0, (action, domain)

    def test_search_over_text_that_expands_when_lowered(self, store):
        store.handle_action(actions.EnvLoaded((EnvVar("CITY", "İzmir"), EnvVar("HOME", "/home/u"))))
        select_tab(store, Tab.ENVIRONMENT)

        store.handle_action(actions.EnterSearch())
        store.handle_action(actions.SearchInput("z"))

        view = store.state.collection(Domain.ENV)
        assert [view.items[i].name for i in view.filtered] == ["CITY"]

    def test_tabs_wrap(self, store):
        store.handle_action(actions.PrevTab())
        assert store.state.tab == Tab.BOOTSTRAP
        store.handle_action(actions.NextTab())
        assert store.state.tab == Tab.TOOLS

    def test_sidebar_moves_switch_tabs(self, store):
        store.handle_action(actions.FocusSidebar())
        store.handle_action(actions.MoveDown())
        assert store.state.tab == Tab.OUTDATED
        assert store.state.focus == Focus.SIDEBAR

    def test_search_filters_and_resets_selection(self, store):
        load_tools(store, *self.tools())
        store.handle_action(actions.MoveDown())

        store.handle_action(actions.EnterSearch())
        for char in "py":
            store.handle_action(actions.SearchInput(char))

        view = store.state.collection(Domain.TOOLS)
        assert view.filtered == [2]
        assert view.highlights == [[0, 1]]
        assert view.selected == 0

        store.handle_action(actions.SearchBackspace())
        store.handle_action(actions.SearchBackspace())
        assert view.filtered == [0, 1, 2]

    def test_cancel_after_exit_search_clears_query(self, store):
        load_tools(store, *self.tools())
        store.handle_action(actions.EnterSearch())
        store.handle_action(actions.SearchInput("g"))
        store.handle_action(actions.ExitSearch())
        assert store.state.search_query == "g"

        store.handle_action(actions.CancelPopup())

        assert store.state.search_query == ""
        assert store.state.collection(Domain.TOOLS).filtered == [0, 1, 2]

    def test_query_applies_to_newly_loaded_collections(self, store):
        store.handle_action(actions.EnterSearch())
        store.handle_action(actions.SearchInput("n"))
        store.handle_action(actions.RegistryLoaded((RegistryEntry("node"), RegistryEntry("go"))))
        assert store.state.collection(Domain.REGISTRY).filtered == [0]

    def test_sort_cycle_and_tab_reset(self, store):
        load_tools(store, *self.tools())
        view = store.state.collection(Domain.TOOLS)

        store.handle_action(actions.CycleSortOrder())
        assert not store.state.sort_ascending
        assert [view.items[i].name for i in view.filtered] == ["python", "node", "go"]

        store.handle_action(actions.CycleSortOrder())
        assert store.state.sort_ascending
        assert store.state.sort_column == 1
        assert [view.items[i].version for i in view.filtered] == ["1.22.0", "20.0.0", "3.12.1"]

        store.handle_action(actions.NextTab())
        assert store.state.sort_column == 0
        assert not store.state.sort_engaged
        assert view.filtered == [0, 1, 2]

    def test_sort_ignored_on_doctor(self, store):
        select_tab(store, Tab.DOCTOR)
        store.handle_action(actions.CycleSortOrder())
        assert not store.state.sort_engaged

    def test_jump_to_cwd_project(self, store):
        store.handle_action(actions.ProjectsLoaded((
            Project("other", "/work/other", health=HealthStatus.HEALTHY),
            Project("app", CWD, health=HealthStatus.MISSING),
        )))

        store.handle_action(actions.JumpToDriftProject())

        assert store.state.tab == Tab.PROJECTS
        assert store.state.collection(Domain.PROJECTS).selected == 1

    def test_jump_without_matching_project(self, store):
        store.handle_action(actions.JumpToDriftProject())
        assert store.state.tab == Tab.PROJECTS
        assert store.state.status_message == "Current directory is not a scanned project"


class TestVersionPicker:
    def open_picker(self, store, action=actions.InstallTool()):
        store.handle_action(actions.RegistryLoaded((RegistryEntry("node"),)))
        select_tab(store, Tab.REGISTRY)
        store.handle_action(action)

    def test_install_flow(self, store):
        self.open_picker(store)
        assert isinstance(store.state.popup, popups.Progress)
        commands = store.take_commands()
        assert ops(commands) == ["fetch_versions"]
        assert commands[0].args == ("node",)

        store.handle_action(commands[0].on_success(["20.1.0", "18.0.0"]))
        picker = store.state.popup
        assert isinstance(picker, popups.VersionPicker)
        assert picker.mode == PickerMode.INSTALL

        store.handle_action(actions.MoveDown())
        store.handle_action(actions.Confirm())
        commands = store.take_commands()
        assert ops(commands) == ["install_tool"]
        assert commands[0].args == ("node", "18.0.0")
        assert isinstance(store.state.popup, popups.Progress)

        store.handle_action(commands[0].on_success("Installed node@18.0.0"))
        assert store.state.popup is None
        assert store.state.status_message == "Installed node@18.0.0"
        assert len(store.take_commands()) == 9

    def test_use_opens_set_global_picker(self, store):
        self.open_picker(store, actions.UseTool())
        complete(store, ["20.1.0"])
        assert store.state.popup.mode == PickerMode.SET_GLOBAL

        store.handle_action(actions.Confirm())
        assert ops(store.take_commands()) == ["use_tool_global"]

    def test_picker_search(self, store):
        self.open_picker(store)
        complete(store, ["20.1.0", "18.0.0", "18.1.0"])

        store.handle_action(actions.PopupSearchInput("1"))
        store.handle_action(actions.PopupSearchInput("8"))
        assert store.state.popup.filtered == [1, 2]

        store.handle_action(actions.PopupSearchBackspace())
        store.handle_action(actions.PopupSearchBackspace())
        assert store.state.popup.filtered == [0, 1, 2]

    def test_empty_version_list(self, store):
        self.open_picker(store)
        complete(store, [])
        assert store.state.popup is None
        assert store.state.status_message == "No versions found"

    def test_cancelled_request_is_dropped(self, store):
        self.open_picker(store)
        stale = store.take_commands()[0]
        store.handle_action(actions.CancelPopup())

        store.handle_action(stale.on_success(["20.1.0"]))

        assert store.state.popup is None

    def test_superseded_request_is_dropped(self, store):
        self.open_picker(store)
        stale = store.take_commands()[0]
        store.handle_action(actions.CancelPopup())
        store.handle_action(actions.InstallTool())
        current = store.take_commands()[0]

        store.handle_action(stale.on_success(["1.0.0"]))
        assert isinstance(store.state.popup, popups.Progress)

        store.handle_action(current.on_success(["2.0.0"]))
        assert store.state.popup.versions == ["2.0.0"]


class TestConfirmedOperations:
    def test_uninstall(self, store):
        load_tools(store, InstalledTool("node", "20.0.0"))
        store.handle_action(actions.UninstallTool())
        assert store.state.popup.message == "Uninstall node@20.0.0?"

        store.handle_action(actions.Confirm())

        commands = store.take_commands()
        assert ops(commands) == ["uninstall_tool"]
        assert commands[0].args == ("node", "20.0.0")

    def test_enter_on_tasks_asks_before_running(self, store):
        store.handle_action(actions.TasksLoaded((MiseTask("build"),)))
        select_tab(store, Tab.TASKS)

        store.handle_action(actions.Confirm())
        assert isinstance(store.state.popup, popups.Confirm)
        store.handle_action(actions.Confirm())

        assert ops(store.take_commands()) == ["run_task"]

    def test_trust_config(self, store):
        store.handle_action(actions.ConfigsLoaded((ConfigFile("/p/.mise.toml"),)))
        select_tab(store, Tab.CONFIG)
        store.handle_action(actions.TrustConfig())
        store.handle_action(actions.Confirm())
        commands = store.take_commands()
        assert commands[0].args == ("/p/.mise.toml",)

    def test_prune_preview(self, store):
        store.handle_action(actions.PruneTool())
        candidates = [PruneCandidate(f"t{i}", "1.0") for i in range(7)]
        complete(store, candidates)

        popup = store.state.popup
        assert popup.message == "Prune 7 versions? (t0@1.0, t1@1.0, t2@1.0, t3@1.0, t4@1.0, ...)"
        store.handle_action(actions.Confirm())
        assert ops(store.take_commands()) == ["prune"]

    def test_nothing_to_prune(self, store):
        store.handle_action(actions.PruneTool())
        complete(store, [])
        assert store.state.popup is None
        assert store.state.status_message == "No unused tool versions to prune"

    def test_cancel_confirm_runs_nothing(self, store):
        load_tools(store, InstalledTool("node", "20.0.0"))
        store.handle_action(actions.UninstallTool())
        store.handle_action(actions.CancelPopup())
        assert store.state.popup is None
        assert store.take_commands() == []

    def test_outdated_upgrade_all(self, store):
        select_tab(store, Tab.OUTDATED)
        store.handle_action(actions.UseTool())
        assert ops(store.take_commands()) == ["upgrade_all"]

    def test_upgrade_all_only_from_outdated(self, store):
        store.handle_action(actions.UpgradeAll())
        assert store.take_commands() == []

        select_tab(store, Tab.OUTDATED)
        store.handle_action(actions.UpgradeAll())
        assert ops(store.take_commands()) == ["upgrade_all"]

    def test_tool_detail(self, store):
        load_tools(store, InstalledTool("node", "20.0.0"))
        store.handle_action(actions.Confirm())
        complete(store, '{"name": "node"}')
        assert isinstance(store.state.popup, popups.Detail)
        assert store.state.popup.title == "node"

    def test_project_install(self, store):
        store.handle_action(actions.ProjectsLoaded((Project("app", CWD),)))
        select_tab(store, Tab.PROJECTS)
        store.handle_action(actions.InstallTool())
        commands = store.take_commands()
        assert ops(commands) == ["install_project_tools"]
        assert commands[0].args == (CWD,)

    def test_popup_blocks_other_operations(self, store):
        store.handle_action(actions.ShowHelp())
        store.handle_action(actions.PruneTool())
        assert isinstance(store.state.popup, popups.Help)
        assert store.take_commands() == []


def editor_state():
    return EditorState(
        file_path=f"{CWD}/.mise.toml",
        raw_document="",
        tools=[EditorRow("node", "20", original_key="node"), EditorRow("go", "1.22", original_key="go")],
    )


class TestEditor:
    @pytest.fixture
    def editor(self, store):
        store.handle_action(actions.OpenEditor(f"{CWD}/.mise.toml"))
        complete(store, editor_state())
        return store.state.popup.state

    def test_open_loads_manifest(self, store):
        store.handle_action(actions.OpenEditor("/p/.mise.toml"))
        commands = store.take_commands()
        assert ops(commands) == ["load_manifest"]
        assert commands[0].args == ("/p/.mise.toml",)

    def test_edit_value_and_save(self, store, editor):
        store.handle_action(actions.Confirm())
        assert editor.editing and editor.edit_buffer == "node"
        store.handle_action(actions.EditorConfirmEdit())
        assert editor.edit_column == 1 and editor.edit_buffer == "20"
        store.handle_action(actions.EditorBackspace())
        store.handle_action(actions.EditorInput("2"))
        store.handle_action(actions.EditorConfirmEdit())

        row = editor.tools[0]
        assert (row.value, row.status) == ("22", RowStatus.MODIFIED)
        assert editor.dirty

        store.handle_action(actions.EditorWrite())
        commands = store.take_commands()
        assert ops(commands) == ["save_manifest"]
        assert commands[0].args[0] is not editor
        assert commands[0].args[0].tools[0].value == "22"

        store.handle_action(commands[0].on_success("Saved"))
        assert store.state.popup is None
        assert store.state.status_message == "Saved"

    def test_duplicate_key_rejected(self, store, editor):
        store.handle_action(actions.MoveDown())
        store.handle_action(actions.EditorStartEdit())
        for _ in "go":
            store.handle_action(actions.EditorBackspace())
        for char in "node":
            store.handle_action(actions.EditorInput(char))
        store.handle_action(actions.EditorConfirmEdit())

        assert editor.edit_column == 0
        assert editor.tools[1].key == "go"
        assert store.state.status_message == "node already exists"

    def test_cancelled_new_row_disappears(self, store, editor):
        store.handle_action(actions.EditorAddTool())
        assert len(editor.tools) == 3 and editor.editing
        store.handle_action(actions.EditorCancelEdit())
        assert len(editor.tools) == 2
        assert not editor.dirty

    def test_add_env_var_switches_tab(self, store, editor):
        store.handle_action(actions.EditorAddEnvVar())
        for char in "FOO":
            store.handle_action(actions.EditorInput(char))
        store.handle_action(actions.EditorConfirmEdit())
        store.handle_action(actions.EditorInput("1"))
        store.handle_action(actions.EditorConfirmEdit())

        assert [(r.key, r.value, r.status) for r in editor.env_vars] == [("FOO", "1", RowStatus.ADDED)]
        assert editor.dirty

    def test_delete_toggles(self, store, editor):
        store.handle_action(actions.EditorDeleteRow())
        assert editor.tools[0].status == RowStatus.DELETED
        assert editor.dirty
        store.handle_action(actions.EditorDeleteRow())
        assert editor.tools[0].status == RowStatus.UNCHANGED
        assert not editor.dirty

    def test_write_without_changes(self, store, editor):
        store.handle_action(actions.EditorWrite())
        assert store.take_commands() == []
        assert store.state.status_message == "No changes to save"

    def test_close_discards(self, store, editor):
        store.handle_action(actions.EditorDeleteRow())
        store.handle_action(actions.EditorClose())
        assert store.state.popup is None
        assert store.state.status_message == f"Discarded unsaved changes to {CWD}/.mise.toml"

    def test_switch_tab(self, store, editor):
        store.handle_action(actions.EditorSwitchTab())
        assert editor.tab.value == "env"
        assert editor.selected == 0


class TestWizard:
    def detected(self):
        return [
            DetectedTool("node", "lts", "package.json"),
            DetectedTool("go", "latest", "go.mod", installed=True),
        ]

    def start(self, store):
        select_tab(store, Tab.BOOTSTRAP)
        store.handle_action(actions.WizardNextStep())

    def test_full_flow(self, store):
        self.start(store)
        assert store.state.wizard.step == WizardStep.DETECTING
        commands = store.take_commands()
        assert ops(commands) == ["detect_tools"]
        assert commands[0].args == (CWD,)

        store.handle_action(commands[0].on_success(self.detected()))
        assert store.state.wizard.step == WizardStep.REVIEW
        assert store.state.popup is None

        store.handle_action(actions.WizardToggleTool())
        store.handle_action(actions.WizardNextStep())
        assert store.state.wizard.step == WizardStep.PREVIEW
        assert "go" in store.state.wizard.preview
        assert "node" not in store.state.wizard.preview

        store.handle_action(actions.Confirm())
        assert store.state.wizard.step == WizardStep.WRITING
        commands = store.take_commands()
        assert ops(commands) == ["write_manifest"]
        assert commands[0].args == (CWD, (("go", "latest"),))

        store.handle_action(commands[0].on_success(f"Wrote {CWD}/.mise.toml"))
        assert store.state.wizard.step == WizardStep.IDLE
        assert len(store.take_commands()) == 9

    def test_nothing_detected(self, store):
        self.start(store)
        complete(store, [])
        assert store.state.wizard.step == WizardStep.IDLE
        assert store.state.status_message == "No tools detected"

    def test_requires_a_selected_tool(self, store):
        self.start(store)
        complete(store, self.detected()[:1])
        store.handle_action(actions.WizardToggleTool())
        store.handle_action(actions.WizardNextStep())
        assert store.state.wizard.step == WizardStep.REVIEW
        assert store.state.status_message == "Select at least one tool"

    def test_write_failure_returns_to_preview(self, store):
        self.start(store)
        complete(store, self.detected())
        store.handle_action(actions.WizardNextStep())
        store.handle_action(actions.WizardNextStep())
        store.take_commands()

        store.handle_action(actions.OperationFailed("disk full"))

        assert store.state.wizard.step == WizardStep.PREVIEW
        assert store.state.popup is None

    def test_cancel_while_detecting(self, store):
        self.start(store)
        stale = store.take_commands()[0]
        store.handle_action(actions.CancelPopup())
        assert store.state.wizard.step == WizardStep.IDLE

        store.handle_action(stale.on_success(self.detected()))
        assert store.state.wizard.step == WizardStep.IDLE

    def test_back_and_cancel(self, store):
        self.start(store)
        complete(store, self.detected())
        store.handle_action(actions.WizardNextStep())
        store.handle_action(actions.WizardPrevStep())
        assert store.state.wizard.step == WizardStep.REVIEW
        store.handle_action(actions.CancelPopup())
        assert store.state.wizard.step == WizardStep.IDLE
