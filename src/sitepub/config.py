"""Application configuration: settings schema and config.yaml loader"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field


CONFIG_FILE = "config.yaml"


class Settings(BaseModel):
    app_name:           str = "sitepub"
    output_dir:         str = Field(default="public", description="Directory the finished site is published to")
    cache_dir:          str = Field(default=".sitepub/cache", description="Persistent artifact cache location")
    concurrency:        int = Field(default=4, ge=1, description="Max parallel conversions")
    continue_on_error:  bool = Field(default=False, description="Exit 0 even when documents fail")
    conversion_timeout: float = Field(default=60.0, gt=0, description="Per-document conversion timeout (seconds)")
    cache_max_bytes:    int = Field(default=256 * 1024 * 1024, ge=0, description="LRU size cap for the cache; 0 = unlimited")
    markdown_preset:    str = Field(default="gfm-like", description="MarkdownIt parser preset name")
    asciidoctor_cmd:    str = Field(default="asciidoctor", description="AsciiDoc converter command, e.g. 'asciidoctor -r asciidoctor-diagram'")
    templates_dir:      Optional[str] = Field(default=None, description="Directory overriding the built-in layouts")
    site_title:         str = Field(default="Blog", description="Site title used by the layouts")


def load_config(overrides: dict[str, Any] = None) -> Settings:
    """Load Settings from config.yaml, then SITEPUB_<FIELD> env vars, then non-None CLI overrides."""
    data: dict[str, Any] = {}
    if Path(CONFIG_FILE).exists():
        try:
            data = yaml.safe_load(Path(CONFIG_FILE).read_text()) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid {CONFIG_FILE}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Invalid {CONFIG_FILE}: expected a mapping")

    for name in Settings.model_fields:
        if val := os.getenv(f"SITEPUB_{name.upper()}"):
            data[name] = val

    if overrides:
        data.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**data)
