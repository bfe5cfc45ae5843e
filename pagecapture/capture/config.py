"""Configuration system for the capture engine.

This module provides configuration management for capture engine settings,
including YAML loading, validation, and environment-specific overrides.
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, Field, ValidationError, field_validator

from .engine import CaptureEngineConfig
from .evasion import DEFAULT_USER_AGENT
from .session_manager import BrowserConfig


ENVIRONMENT_VAR = 'PAGECAPTURE_ENV'
BROWSER_PATH_VAR = 'PAGECAPTURE_CHROMIUM_PATH'


class CaptureConfig(BaseModel):
    """Root configuration for capture system."""

    environment: str = Field(default="production", description="Environment name")
    browser: Dict[str, Any] = Field(default_factory=dict, description="Browser configuration")
    engine: Dict[str, Any] = Field(default_factory=dict, description="Engine configuration")
    environments: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Environment-specific overrides"
    )

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        valid_environments = {'production', 'staging', 'development', 'test'}
        if v not in valid_environments:
            raise ValueError(f"Environment must be one of: {valid_environments}")
        return v

    def _section(self, name: str) -> Dict[str, Any]:
        config = dict(getattr(self, name))

        # Apply environment-specific overrides
        if self.environment in self.environments:
            env_config = self.environments[self.environment] or {}
            if name in env_config:
                config.update(env_config[name] or {})

        return config

    def get_browser_config(self) -> BrowserConfig:
        """Get browser configuration with environment overrides applied."""
        config = self._section('browser')

        # The deployment environment owns the browser binary location
        executable_path = os.environ.get(BROWSER_PATH_VAR) or config.get('executable_path')

        return BrowserConfig(
            headless=config.get('headless', True),
            executable_path=executable_path,
            disable_sandbox=config.get('disable_sandbox', True),
            launch_timeout_ms=config.get('launch_timeout_ms', 30000),
            extra_args=config.get('extra_args'),
            locale=config.get('locale', 'en-US'),
            timezone=config.get('timezone'),
            ignore_https_errors=config.get('ignore_https_errors', False),
        )

    def get_engine_config(self) -> CaptureEngineConfig:
        """Get engine configuration with environment overrides applied."""
        config = self._section('engine')

        return CaptureEngineConfig(
            browser_config=self.get_browser_config(),
            user_agent=config.get('user_agent') or DEFAULT_USER_AGENT,
            max_concurrent_sessions=config.get('max_concurrent_sessions', 4),
            acquire_timeout_ms=config.get('acquire_timeout_ms', 10000),
            release_timeout_ms=config.get('release_timeout_ms', 10000),
            warm_pool_size=config.get('warm_pool_size', 0),
            navigation_timeout_ms=config.get('navigation_timeout_ms', 30000),
            content_timeout_ms=config.get('content_timeout_ms', 10000),
            capture_deadline_ms=config.get('capture_deadline_ms', 45000),
            screenshot_timeout_ms=config.get('screenshot_timeout_ms', 30000),
            network_idle_max_inflight=config.get('network_idle_max_inflight', 2),
            network_idle_quiet_ms=config.get('network_idle_quiet_ms', 500),
            block_trackers=config.get('block_trackers', True),
        )


class CaptureConfigManager:
    """Reads capture.yaml, re-reading it when PAGECAPTURE_ENV changes."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        if config_path is None:
            config_path = Path(__file__).resolve().parents[2] / "config" / "capture.yaml"

        self.config_path = Path(config_path)
        self._config: Optional[CaptureConfig] = None
        self._selected_env: Optional[str] = None

    @property
    def config(self) -> CaptureConfig:
        """Configuration for the environment currently selected."""
        selected = os.environ.get(ENVIRONMENT_VAR)
        if self._config is None or selected != self._selected_env:
            self._config = self._read(selected)
            self._selected_env = selected
        return self._config

    def _read(self, environment: Optional[str]) -> CaptureConfig:
        """Parse and validate the YAML file.

        Raises:
            FileNotFoundError: If the file is missing
            yaml.YAMLError: If the file is not valid YAML
            ValueError: If the content does not validate
        """
        try:
            raw = self.config_path.read_text()
        except FileNotFoundError:
            raise FileNotFoundError(f"Capture config not found: {self.config_path}") from None

        try:
            data = yaml.safe_load(raw) or {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"Capture config must be a mapping: {self.config_path}")
        if environment:
            data['environment'] = environment

        try:
            return CaptureConfig(**data)
        except ValidationError as e:
            raise ValueError(f"Invalid capture config {self.config_path}: {e}") from e


_config_manager: Optional[CaptureConfigManager] = None


def get_config(config_path: Optional[Union[str, Path]] = None) -> CaptureConfigManager:
    """Process-wide config manager; config_path only applies on first call."""
    global _config_manager
    if _config_manager is None:
        _config_manager = CaptureConfigManager(config_path)
    return _config_manager


def reset_config() -> None:
    """Drop the cached global configuration manager."""
    global _config_manager
    _config_manager = None


def create_engine_from_config(config_path: Optional[Union[str, Path]] = None) -> CaptureEngineConfig:
    """Build a CaptureEngineConfig from capture.yaml.

    Args:
        config_path: Path to capture config YAML file

    Returns:
        Configured CaptureEngineConfig instance
    """
    return get_config(config_path).config.get_engine_config()
