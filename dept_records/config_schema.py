"""
JSON Configuration Schema for dept_records.

Pydantic models for ``config.json``. Every section is optional: a missing
file or section falls back to the defaults below, which reproduce the
production behaviour (gemini-2.0-flash, temperature 0.1, 8192 output tokens
for images, 32768 for PDFs and re-extraction, empty-ratio threshold 0.4).

API keys are never read from config.json; they come from the environment
(``.env`` supported via python-dotenv).
"""

import json
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from dept_records.exceptions import ConfigurationError


class APIKeysConfig(BaseModel):
    """
    API Keys configuration - loaded from .env file.

    API keys are NEVER stored in config.json for security.
    Instead, they are loaded from environment variables.
    """

    google_api_key: Optional[str] = Field(
        default=None,
        description="Google Gemini API key (loaded from GOOGLE_API_KEY or GEMINI_API_KEY env var)"
    )

    @model_validator(mode="after")
    def load_from_env(self):
        """Load API keys from environment variables (.env file)."""
        load_dotenv()

        self.google_api_key = (
            os.getenv("GOOGLE_API_KEY")
            or os.getenv("GEMINI_API_KEY")
            or self.google_api_key
        )
        return self


class GeminiConfig(BaseModel):
    """Gemini generateContent settings."""

    model_config = ConfigDict(extra="forbid")

    model: str = Field(
        default="gemini-2.0-flash",
        description="Gemini model used for extraction and re-extraction"
    )
    base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="REST base URL; '/models/{model}:generateContent' is appended"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for all extraction calls"
    )
    image_max_output_tokens: int = Field(
        default=8192,
        gt=0,
        description="Output token limit for single-image extraction"
    )
    document_max_output_tokens: int = Field(
        default=32768,
        gt=0,
        description="Output token limit for multi-page PDF/Word extraction"
    )
    reextract_max_output_tokens: int = Field(
        default=32768,
        gt=0,
        description="Output token limit for the empty-table re-extraction call"
    )
    timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="HTTP timeout for one generateContent call"
    )


class QualityGateConfig(BaseModel):
    """Empty-table quality gate settings."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(
        default=True,
        description="Re-extract tables with too many blank cells"
    )
    empty_ratio_threshold: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Tables with an empty-cell ratio strictly above this are re-extracted"
    )


class ExportConfig(BaseModel):
    """Excel/PDF export settings."""

    model_config = ConfigDict(extra="forbid")

    output_dir: Path = Field(
        default=Path("exports"),
        description="Directory where exported files are written"
    )
    column_width: int = Field(
        default=25,
        gt=0,
        description="Excel column width (characters)"
    )
    max_name_length: int = Field(
        default=50,
        gt=0,
        description="Maximum length of the sanitised export file stem"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")

    level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )
    log_file: Optional[Path] = Field(
        default=None,
        description="Optional log file path"
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"level must be one of {sorted(valid)}, got {v!r}")
        return upper


class RootConfig(BaseModel):
    """Root configuration; every section has defaults."""

    model_config = ConfigDict(extra="forbid")

    api_keys: APIKeysConfig = Field(default_factory=APIKeysConfig)
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    quality_gate: QualityGateConfig = Field(default_factory=QualityGateConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_json_file(cls, path: Path) -> "RootConfig":
        """
        Load configuration from a JSON file.

        Args:
            path: Path to config.json

        Returns:
            Validated RootConfig instance

        Raises:
            ConfigurationError: If the file is malformed or fails validation
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Invalid JSON in {path}: {e.msg} (line {e.lineno})",
                details={"path": str(path)},
                cause=e,
            ) from e
        except UnicodeDecodeError as e:
            raise ConfigurationError(
                f"Invalid UTF-8 encoding in {path}",
                details={"path": str(path)},
                cause=e,
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration root in {path} must be a JSON object",
                details={"path": str(path)},
            )

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Configuration validation failed for {path}:\n{e}",
                details={"path": str(path)},
                cause=e,
            ) from e


def load_config(config_path: Optional[Path] = None) -> RootConfig:
    """
    Load and validate configuration from config.json.

    Args:
        config_path: Optional path to config.json (default: ./config.json)

    Returns:
        Validated RootConfig instance; defaults when the file does not exist

    Raises:
        ConfigurationError: If the file exists but is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / "config.json"
    config_path = Path(config_path)

    if not config_path.exists():
        return RootConfig()
    return RootConfig.from_json_file(config_path)
