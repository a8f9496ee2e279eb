"""Configuration models and loading logic."""

from __future__ import annotations

import os
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from prerender.render.routes import validate_route_map

DEFAULT_SETTINGS_FILE = Path("configs/settings.yaml")
SETTINGS_FILE_ENV = "PRERENDER_SETTINGS_FILE"


class ProjectConfig(BaseModel):
    """Project metadata settings."""

    name: str = "prerender"
    env: str = "dev"


class PathsConfig(BaseModel):
    """Filesystem paths used by the build and render stages."""

    project_root: Path = Path(".")
    build_root: Path = Path("./build")
    artifacts_root: Path = Path("./artifacts")
    logs_root: Path = Path("./logs")

    def resolved(self, project_root: Path) -> "PathsConfig":
        """Return a copy with project-relative paths resolved to absolute paths."""

        updates: dict[str, Path] = {}
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            updates[field_name] = value if value.is_absolute() else (project_root / value).resolve()
        return self.model_copy(update=updates)


class TasksConfig(BaseModel):
    """External commands run before the server starts."""

    verify_command: list[str] = Field(default_factory=lambda: ["npx", "eslint", "src", "webpack"])
    test_command: list[str] = Field(default_factory=lambda: ["npx", "mocha"])
    build_command: list[str] = Field(default_factory=lambda: ["npx", "webpack", "--config", "webpack/build.js"])


class EnvironmentConfig(BaseModel):
    """Names of the environment variables handed to the build and the server."""

    mode_var: str = "NODE_ENV"
    version_var: str = "appVersion"
    serverless_var: str = "IS_SERVERLESS"
    source_version_var: str = "SOURCE_VERSION"


class ServerConfig(BaseModel):
    """How to launch the compiled application and detect that it listens."""

    command: list[str] = Field(default_factory=lambda: ["node", "./src/server"], min_length=1)
    host: str = "localhost"
    port: int = Field(default=8000, ge=1, le=65535)
    ready_marker: str = Field(default="Server started", min_length=1)
    ready_timeout_seconds: float = Field(default=60.0, gt=0.0)
    stop_timeout_seconds: float = Field(default=10.0, gt=0.0)
    extra_env: dict[str, str] = Field(default_factory=dict)

    @property
    def base_address(self) -> str:
        return f"http://{self.host}:{self.port}"


class RenderConfig(BaseModel):
    """Routes to snapshot and how to lay out the static output."""

    routes: dict[str, str] = Field(default_factory=lambda: {"/": "index.html", "/404": "404.html"})
    expected_statuses: dict[str, int] = Field(default_factory=lambda: {"/404": 404})
    assets_dirname: str = Field(default="assets", min_length=1)
    fetch_timeout_seconds: float = Field(default=30.0, gt=0.0)
    max_workers: int = Field(default=8, ge=1)

    @field_validator("routes")
    @classmethod
    def check_routes(cls, value: dict[str, str]) -> dict[str, str]:
        return validate_route_map(value)

    @field_validator("assets_dirname")
    @classmethod
    def check_assets_dirname(cls, value: str) -> str:
        if "/" in value or "\\" in value or value in {".", ".."}:
            raise ValueError("assets_dirname must be a single directory name")
        return value


class DeployConfig(BaseModel):
    """Command that publishes the rendered build directory."""

    command: list[str] = Field(default_factory=lambda: ["firebase", "deploy"], min_length=1)


class AppSettings(BaseSettings):
    """Top-level application settings."""

    _yaml_file_override: ClassVar[Path | None] = None

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    tasks: TasksConfig = Field(default_factory=TasksConfig)
    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)
    deploy: DeployConfig = Field(default_factory=DeployConfig)

    model_config = SettingsConfigDict(
        env_prefix="PRERENDER_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Use YAML defaults while allowing env vars to override values."""

        yaml_file = resolve_settings_file(cls._yaml_file_override)
        yaml_settings = YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            yaml_settings,
            file_secret_settings,
        )

    def as_dict(self) -> dict[str, object]:
        """Return settings as a standard nested dictionary."""

        return self.model_dump(mode="json")


def find_project_root(start: Path | None = None) -> Path:
    """Locate the project root by traversing upward for config markers."""

    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / "configs/settings.yaml").exists():
            return candidate
    return current


def resolve_settings_file(override: Path | None = None) -> Path:
    """Resolve settings file from explicit override, env var, or default."""

    chosen = override
    if chosen is None:
        env_value = os.getenv(SETTINGS_FILE_ENV)
        if env_value:
            chosen = Path(env_value)
    if chosen is None:
        chosen = DEFAULT_SETTINGS_FILE

    if not chosen.is_absolute():
        chosen = (find_project_root() / chosen).resolve()
    return chosen


def load_settings(config_file: Path | None = None) -> AppSettings:
    """Load settings with YAML defaults and environment variable overrides."""

    settings_file = resolve_settings_file(config_file)
    project_root = settings_file.parent.parent.resolve()
    AppSettings._yaml_file_override = settings_file
    try:
        settings = AppSettings()
    finally:
        AppSettings._yaml_file_override = None
    resolved_paths = settings.paths.resolved(project_root=project_root)
    return settings.model_copy(update={"paths": resolved_paths})
