"""CLI module for the response archiver.

This package provides the settings loader, the archiver runner and the
``archiver`` command line interface.
"""

from .config import (
    ArchiverSettings,
    SettingsLoader,
    load_settings,
    print_configuration,
)
from .runner import (
    # Exit codes
    ExitCode,

    # Runner
    ArchiverContext,
    ArchiverProfile,
    ArchiverRunner,
)

__all__ = [
    # Exit codes
    'ExitCode',

    # Runner
    'ArchiverContext',
    'ArchiverProfile',
    'ArchiverRunner',

    # Settings
    'ArchiverSettings',
    'SettingsLoader',
    'load_settings',
    'print_configuration',
]
