"""Configuration loading and validation."""

import json
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError


class WorkerConfig(BaseModel):
    """How the worker process is launched."""
    command: list[str] = Field(default_factory=lambda: ["claude"])
    args: list[str] = Field(default_factory=list)
    working_directory: Optional[str] = Field(default=None)
    skip_permissions: bool = Field(default=False)
    pass_task_id_argument: bool = Field(default=True)
    env: dict[str, str] = Field(default_factory=dict)

    @field_validator("command")
    @classmethod
    def _command_not_empty(cls, value: list[str]) -> list[str]:
        if not value or not value[0].strip():
            raise ValueError("worker command must name an executable")
        return value


class SessionConfig(BaseModel):
    """Terminal multiplexer session hosting the supervisor."""
    auto_close: bool = Field(default=False)
    project_name: str = Field(default="default")
    session_prefix: str = Field(default="co")
    multiplexer: str = Field(default="zellij")
    close_timeout_seconds: float = Field(default=5.0, gt=0, le=60)

    @property
    def session_name(self) -> str:
        return f"{self.session_prefix}-{self.project_name}"


class SupervisorConfig(BaseModel):
    """Main supervisor configuration."""
    name: str = Field(default="task-supervisor")
    version: str = Field(default="0.1.0")

    database_path: str = Field(default="./data/tasks.db")

    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)


class ConfigLoader:
    """Loads and validates YAML/JSON configuration."""

    def __init__(self, config_dir: str = "./config"):
        self.config_dir = Path(config_dir)

    def load_supervisor_config(
        self,
        path: Optional[str] = None,
        required: bool = False,
    ) -> SupervisorConfig:
        """Load supervisor configuration.

        A missing file yields defaults unless ``required`` is set.
        """
        if path is None:
            path = self.config_dir / "supervisor.yaml"
        else:
            path = Path(path)

        if not path.exists():
            if required:
                raise ConfigError(f"Config file not found: {path}", config_path=str(path))
            return SupervisorConfig()

        data = self._load_file(path)
        try:
            return SupervisorConfig(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid supervisor config: {e}", config_path=str(path))

    def _load_file(self, path: Path) -> dict[str, Any]:
        """Load YAML or JSON file."""
        try:
            content = path.read_text()

            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(content) or {}
            elif path.suffix == ".json":
                data = json.loads(content)
            else:
                raise ConfigError(
                    f"Unsupported config format: {path.suffix}",
                    config_path=str(path)
                )
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}", config_path=str(path))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON: {e}", config_path=str(path))

        if not isinstance(data, dict):
            raise ConfigError("Config root must be a mapping", config_path=str(path))
        return data
