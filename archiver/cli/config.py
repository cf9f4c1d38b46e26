"""Settings for the archiver CLI with proper precedence handling.

Sources, highest precedence first:
CLI flags > environment variables > settings file

A missing or invalid settings file is replaced by one holding default values
and the run stops so the operator can review it.
"""

import json
import logging
import os
import random
import shutil
import sys
from pathlib import Path, PureWindowsPath
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel, to_snake

from ..errors import ConfigurationError
from ..models.capture import CaptureRule

logger = logging.getLogger(__name__)

DEFAULT_ARCHIVER_NAME = "archiver"


class ArchiverSettings(BaseModel):
    """Settings shared by every archiver.

    Keys may be written in snake_case or in camelCase.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    cdp_port: int = Field(ge=1, le=65535, description="Browser remote debugging port")
    chromium_path: str = Field(min_length=1, description="Chromium compatible browser executable")
    archive_path: Path = Field(description="Absolute archive root directory")
    web_socket_debugger_url: Optional[str] = Field(
        default=None,
        description="Connect to this DevTools WebSocket instead of launching a browser"
    )
    print_web_socket_debugger_url: bool = Field(default=False, description="Print the WebSocket URL")
    skip_record: bool = Field(default=False, description="Write images without metadata records")
    headless: bool = Field(default=False, description="Run a launched browser headless")
    user_data_dir: Optional[Path] = Field(default=None, description="Browser profile directory")
    initial_url: Optional[str] = Field(default=None, description="URL opened when the browser is launched")
    capture_rules: List[CaptureRule] = Field(default_factory=list, description="Responses to archive")
    launch_timeout_seconds: float = Field(default=15.0, gt=0, description="Browser launch timeout")

    # Metadata
    config_file_path: Optional[Path] = Field(default=None, exclude=True)

    @field_validator('archive_path', mode='before')
    @classmethod
    def validate_archive_path(cls, v):
        path = str(v).replace('\\', '/')
        if len(path) > 1 and path.endswith('/'):
            path = path[:-1]
        if not (Path(path).is_absolute() or PureWindowsPath(path).is_absolute()):
            raise ValueError(f"The archive_path must be absolute, not this relative path: {path}")
        return path


def _pick_path_that_exists(choices: List[str]) -> Optional[str]:
    for choice in choices:
        path = os.path.expanduser(os.path.expandvars(choice)).replace('\\', '/')
        if os.path.exists(path):
            return path
    return None


def default_chromium_path() -> str:
    """Best guess of the browser executable for this platform."""
    if sys.platform == "win32":
        return _pick_path_that_exists([
            "%ProgramFiles%/Google/Chrome/Application/chrome.exe",
            "%ProgramFiles(x86)%/Google/Chrome/Application/chrome.exe",
            "%LocalAppData%/Google/Chrome/Application/chrome.exe",
        ]) or "c:/path/to/chromium-compatible-browser.exe"
    if sys.platform == "darwin":
        return _pick_path_that_exists([
            "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
            "~/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
            "/Applications/Chromium.app/Contents/MacOS/Chromium",
        ]) or "/path/to/chromium-compatible-browser"
    for name in ("google-chrome", "chromium", "chromium-browser"):
        if shutil.which(name):
            return name
    return "google-chrome"


def default_settings_data() -> Dict[str, Any]:
    """Default values written to a fresh settings file."""
    return {
        # Not using the default port provides some security
        "cdp_port": random.randint(10000, 65534),
        "chromium_path": default_chromium_path(),
        "archive_path": Path.cwd().as_posix(),
        "capture_rules": [],
    }


def write_default_settings(config_path: Path) -> None:
    """Write a settings file with default values.

    An existing (invalid) file is kept next to it with a ``.bak`` suffix.
    """
    config_path.parent.mkdir(parents=True, exist_ok=True)
    if config_path.exists():
        config_path.replace(config_path.with_name(config_path.name + ".bak"))
    data = default_settings_data()
    if config_path.suffix.lower() == ".json":
        content = json.dumps(data, indent=2)
    else:
        content = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    config_path.write_text(content, encoding='utf-8')


class SettingsLoader:
    """Loads and merges settings from the file, the environment and CLI flags."""

    ENV_PREFIX = "ARCHIVER_"

    ENV_MAPPING = {
        "CDP_PORT": "cdp_port",
        "CHROMIUM_PATH": "chromium_path",
        "ARCHIVE_PATH": "archive_path",
        "WEB_SOCKET_DEBUGGER_URL": "web_socket_debugger_url",
        "SKIP_RECORD": "skip_record",
        "HEADLESS": "headless",
    }

    BOOL_FIELDS = ("skip_record", "headless")

    def __init__(self, archiver_name: str = DEFAULT_ARCHIVER_NAME):
        self.archiver_name = archiver_name
        self.loaded_sources: List[str] = []

    def default_config_path(self) -> Path:
        return Path(f"{self.archiver_name}.yaml")

    def load_settings(
        self,
        config_path: Optional[Path] = None,
        cli_overrides: Optional[Dict[str, Any]] = None,
    ) -> ArchiverSettings:
        """Load settings with proper precedence.

        Args:
            config_path: Settings file (``<archiver name>.yaml`` by default)
            cli_overrides: CLI flag overrides; None values are ignored

        Returns:
            Validated settings

        Raises:
            ConfigurationError: If the file is missing or invalid, after
                writing a default one in its place, or if an environment or
                CLI override is invalid (the file is left alone)
        """
        config_path = Path(config_path) if config_path else self.default_config_path()
        self.loaded_sources = []

        try:
            data = self._load_config_file(config_path)
            ArchiverSettings.model_validate(data)
        except (ValueError, ValidationError) as e:
            message = (
                f"No valid {config_path.name} found, creating one with default values. "
                f"Please check it before running me again! The error message was: {e}"
            )
            try:
                write_default_settings(config_path)
            except OSError as write_error:
                message += f"\nFailed creating it, error: {write_error}"
            raise ConfigurationError(message)
        self.loaded_sources.append(f"config file: {config_path}")

        env_data = self._load_environment_variables()
        if env_data:
            data.update(env_data)
            self.loaded_sources.append("environment variables")

        overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
        if overrides:
            data.update(overrides)
            self.loaded_sources.append("CLI flags")

        # The file alone is valid, so only an override can fail here
        try:
            settings = ArchiverSettings.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid setting from {' and '.join(self.loaded_sources[1:])}: {e}"
            )

        settings.config_file_path = config_path
        return settings

    def _load_config_file(self, config_path: Path) -> Dict[str, Any]:
        """Load settings from a YAML or JSON file."""
        try:
            content = config_path.read_text(encoding='utf-8')
        except OSError as e:
            raise ValueError(f"Can't read {config_path}: {e}")

        try:
            if config_path.suffix.lower() == '.json':
                data = json.loads(content)
            else:
                data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file {config_path}: {e}")
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file {config_path}: {e}")

        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_path} must hold a mapping")
        # Field names, so environment and CLI overrides replace camelCase keys
        return {to_snake(str(key)): value for key, value in data.items()}

    def _load_environment_variables(self) -> Dict[str, Any]:
        """Load settings from ``ARCHIVER_*`` environment variables."""
        config = {}
        for suffix, field_name in self.ENV_MAPPING.items():
            env_value = os.getenv(f"{self.ENV_PREFIX}{suffix}")
            if env_value is None:
                continue
            if field_name in self.BOOL_FIELDS:
                config[field_name] = env_value.lower() in ('true', '1', 'yes', 'on')
            else:
                config[field_name] = env_value
        return config


def load_settings(
    config_path: Optional[Path] = None,
    cli_overrides: Optional[Dict[str, Any]] = None,
    archiver_name: str = DEFAULT_ARCHIVER_NAME,
) -> ArchiverSettings:
    """Convenience function to load settings.

    Args:
        config_path: Settings file
        cli_overrides: CLI flag overrides
        archiver_name: Names the default settings file

    Returns:
        Loaded and merged settings
    """
    loader = SettingsLoader(archiver_name)
    settings = loader.load_settings(config_path, cli_overrides)
    logger.debug(f"Settings loaded from: {', '.join(loader.loaded_sources)}")
    return settings


def print_configuration(settings: ArchiverSettings, format: str = "yaml") -> str:
    """Render settings in the specified format.

    Args:
        settings: Settings to print
        format: Output format (yaml, json)

    Returns:
        Formatted settings string
    """
    config_dict = settings.model_dump(mode="json", exclude_none=False)
    # Capture rules are written with their file keys
    config_dict["capture_rules"] = [
        rule.model_dump(mode="json", by_alias=True) for rule in settings.capture_rules
    ]

    if format.lower() == "json":
        return json.dumps(config_dict, indent=2, default=str)
    return yaml.safe_dump(config_dict, default_flow_style=False, sort_keys=True)
