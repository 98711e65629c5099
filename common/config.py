from __future__ import annotations

from pathlib import Path
from typing import List

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = ROOT_DIR / "config" / "config.yaml"


class AppConfig(BaseModel):
    cache_dir: Path = Path("data/cache")
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR)$")


class IngestConfig(BaseModel):
    window_days: int = Field(default=7, ge=1)
    page_size: int = Field(default=100, ge=1, le=100)
    # pages acting as containers for hundreds of sub-pages; slow and not useful
    skip_url_patterns: List[str] = Field(default_factory=list)

    fetch_attempts: int = Field(default=3, ge=1)
    backoff_min: float = 1
    backoff_max: float = 8

    # cached units last edited longer ago than this are dropped at each run
    cache_ttl_days: int | None = Field(default=30, ge=1)


class ResolverConfig(BaseModel):
    max_depth: int | None = Field(default=None, ge=0)


class RenderConfig(BaseModel):
    separator: str = "\n"
    include_ids: bool = False
    indent: str = ""
    skip_empty: bool = False


class GlobalYAMLConfig(BaseModel):
    app: AppConfig = Field(default_factory=AppConfig)
    ingest: IngestConfig = Field(default_factory=IngestConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)


def load_yaml_config(path: Path = DEFAULT_CONFIG_PATH) -> GlobalYAMLConfig:
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}
    return GlobalYAMLConfig(**raw)


class Secrets(BaseSettings):
    notion_token: str = Field(default="", validation_alias="NOTION_TOKEN")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# defaults apply outside a checkout that ships config/config.yaml
yaml_config = (
    load_yaml_config() if DEFAULT_CONFIG_PATH.exists() else GlobalYAMLConfig()
)
secrets = Secrets()
