"""Configuration for jsonmatch using pydantic-settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceSettings(BaseSettings):
    """Settings for reading input records."""

    model_config = SettingsConfigDict(
        env_prefix="SOURCE_",
    )

    encoding: str = Field(
        default="utf-8",
        description="Text encoding used to decode each input line (files and stdin)",
    )

    skip_blank_lines: bool = Field(
        default=False,
        description=(
            "Silently skip blank input lines instead of reporting them as decode errors. "
            "Skipped lines produce no item, so the item count no longer equals the line count"
        ),
    )


class SinkSettings(BaseSettings):
    """Settings for writing matched records."""

    model_config = SettingsConfigDict(
        env_prefix="SINK_",
    )

    overwrite: bool = Field(
        default=False,
        description="Truncate existing output files instead of refusing to start",
    )

    encoding: str = Field(
        default="utf-8",
        description="Text encoding used to write output files",
    )

    sort_keys: bool = Field(
        default=False,
        description="Sort object keys when serializing matched records",
    )

    ensure_ascii: bool = Field(
        default=False,
        description="Escape non-ASCII characters when serializing matched records",
    )

    flush_each_record: bool = Field(
        default=True,
        description="Flush the destination after every matched record",
    )


class PipelineSettings(BaseSettings):
    """Global settings for the entire pipeline."""

    model_config = SettingsConfigDict(
        env_prefix="JSONMATCH_",
    )

    source: SourceSettings = Field(default_factory=SourceSettings)
    sink: SinkSettings = Field(default_factory=SinkSettings)


# Global settings instance that can be accessed throughout the application
_settings: PipelineSettings | None = None


def get_settings() -> PipelineSettings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = PipelineSettings()
    return _settings


def set_settings(settings: PipelineSettings) -> None:
    """Set the global settings instance."""
    global _settings
    _settings = settings
