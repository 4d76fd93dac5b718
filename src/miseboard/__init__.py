"""
miseboard - A Terminal User Interface (TUI) dashboard for mise-managed tools.

This package wraps the ``mise`` command-line tool with a keyboard-driven
dashboard for installed tools, the plugin registry, outdated versions, tasks,
environment, settings, config files and per-project manifest health.

Features:
  - Multi-tab interface (Tools, Outdated, Registry, Tasks, Env, Settings,
    Config, Doctor, Projects, Bootstrap)
  - Fuzzy search across every tab with highlighted matches
  - Version picker for install / global use, uninstall, upgrade, prune, trust
  - Project health scan of .mise.toml manifests below configured roots
  - Inline manifest editor that preserves comments and formatting

Main Components:
  - textual_app.py: Textual UI, key mapping and the action bus consumer
  - state.py: The reducer (StateStore) that owns all application state
  - dispatcher.py: Action bus and async command dispatcher
  - backend.py: mise CLI wrapper (the gateway)
  - search.py: Fuzzy filter / sort engine
  - scanner.py: Project health scanner
  - manifest.py: .mise.toml parsing, editing and bootstrap detection

Usage:
  python -m miseboard

Dependencies:
  - textual / rich
  - PyYAML (configuration)
  - tomlkit (manifest round-tripping)
  - mise on PATH
"""

import os
from pathlib import Path

__version__ = "0.1.0"


def get_log_path() -> str:
    """
    Get the log file path following XDG Base Directory spec.

    Returns XDG_DATA_HOME/miseboard/logs/miseboard.log with fallback to /tmp.
    Creates directory if it doesn't exist.

    Returns:
        str: Absolute path to log file (/tmp/miseboard.log as fallback)
    """
    xdg_data_home = os.environ.get('XDG_DATA_HOME')
    if not xdg_data_home:
        xdg_data_home = Path.home() / '.local' / 'share'
    else:
        xdg_data_home = Path(xdg_data_home)

    log_dir = xdg_data_home / 'miseboard' / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / 'miseboard.log')
    except (PermissionError, OSError):
        return '/tmp/miseboard.log'
