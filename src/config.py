"""
Configuration and logging setup.

Settings are read from SQUISH_* environment variables and an optional .env
file. A YAML file given with --config overrides both. The OpenAI credential
uses the standard OPENAI_API_KEY variable.
"""

import logging
import tempfile
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import AliasChoices, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from errors import ConfigurationError, MissingCredentialError, TranscoderErrorKind

logger = logging.getLogger(__name__)


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

DEFAULT_TRANSIENT_PATTERNS = [
    "ecanceled",
    "operation canceled",
    "connection reset",
    "i/o error",
    "input/output error",
    "read error",
    "error reading",
    "resource temporarily unavailable",
]


class Settings(BaseSettings):
    openai_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "SQUISH_OPENAI_API_KEY"),
    )

    # AI service
    vision_model: str = "gpt-4o"
    text_model: str = "gpt-4o"
    transcription_model: str = "whisper-1"
    probe_max_tokens: int = 500
    describe_max_tokens: int = 100
    importance_max_tokens: int = 500
    name_max_tokens: int = 50
    name_temperature: float = 0.7
    request_timeout: float = 120.0

    # Analysis pipeline
    probe_position: float = 0.2  # fraction of the duration
    transcript_duration_threshold: float = 5.0
    scratch_root: Path = Path(tempfile.gettempdir()) / "video-squish"
    summary_json_name: str = "summaries_and_transcripts.json"
    summary_text_name: str = "summaries_and_transcripts.txt"

    # Compression
    compressed_dir_name: str = "compressed"
    staging_dir_name: str = "temp_output"
    max_attempts: int = 3
    retry_delay: float = 5.0
    transcode_timeout: float = 3600.0
    kill_grace: float = 5.0
    transient_error_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_TRANSIENT_PATTERNS))
    retryable_kinds: List[TranscoderErrorKind] = Field(
        default_factory=lambda: [TranscoderErrorKind.TRANSIENT_IO]
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SQUISH_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    def require_api_key(self) -> str:
        """Return the OpenAI key or fail loudly when it is missing."""
        if not self.openai_api_key:
            raise MissingCredentialError(
                "OPENAI_API_KEY is not set. Export it or add it to a .env file."
            )
        return self.openai_api_key


def load_settings(config_path: Optional[str] = None) -> Settings:
    """
    Build the settings object.

    Args:
        config_path: Optional YAML file; its keys override environment values

    Returns:
        Settings instance
    """
    overrides = {}
    if config_path:
        path = Path(config_path)
        if not path.is_file():
            raise ConfigurationError(f"Config file not found: {config_path}")

        with open(path, 'r') as f:
            try:
                overrides = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(overrides, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {config_path}")
        logger.info(f"Loaded settings overrides from {config_path}: {sorted(overrides)}")

    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e


def setup_logging(verbose: bool = False):
    """Configure root logging for the CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT
    )
    # The HTTP stack is noisy at DEBUG
    for name in ("httpx", "httpcore", "openai"):
        logging.getLogger(name).setLevel(logging.WARNING)
