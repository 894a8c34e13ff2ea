"""Configuration loader and validation."""

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

__all__ = [
    "ServerConfig",
    "AwsConfig",
    "SessionConfig",
    "GeneralConfig",
    "Config",
    "ConfigError",
    "load_config",
]

SECTIONS = ("server", "aws", "session", "general")
VALID_ENCODINGS = ("pcm", "ogg-opus", "flac")
SECRET_FIELDS = ("access_key_id", "secret_access_key", "session_token")


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


@dataclass
class ServerConfig:
    """WebSocket listener configuration."""

    host: str = "0.0.0.0"
    port: int = 3000
    # Must stay well above the base64 size of max_chunk_bytes so oversized
    # chunks reach the session and get a non-fatal error instead of a 1009.
    max_message_size: int = 10 * 1024 * 1024


@dataclass
class AwsConfig:
    """Amazon Transcribe streaming configuration."""

    region: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    session_token: str | None = None
    language_code: str = "en-US"
    media_encoding: str = "pcm"
    sample_rate: int = 44100
    show_speaker_label: bool = True


@dataclass
class SessionConfig:
    """Per-connection relay settings."""

    max_chunk_bytes: int = 10 * 1024
    poll_interval: float = 0.1
    reconnect_delay: float = 1.0
    max_stream_attempts: int = 2
    heartbeat_interval: float = 30.0
    max_buffered_chunks: int = 1000


@dataclass
class GeneralConfig:
    """General application settings."""

    verbose: bool = False


@dataclass
class Config:
    """Main configuration container."""

    server: ServerConfig = field(default_factory=ServerConfig)
    aws: AwsConfig = field(default_factory=AwsConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    general: GeneralConfig = field(default_factory=GeneralConfig)

    @classmethod
    def from_toml(
        cls,
        path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Load configuration from TOML file with environment overrides.

        Args:
            path: Explicit config file path. If None, searches in order:
                  1. TRANSCRIBE_RELAY_CONFIG env var
                  2. ./relay.toml
                  3. ~/.config/transcribe-relay.toml
                  Defaults are used when none of these exist.
            env: Environment variables for overrides (defaults to os.environ)

        Returns:
            Loaded Config instance

        Raises:
            ConfigError: If an explicit config file is missing or values are invalid
        """
        if env is None:
            env = os.environ

        resolved_path = _resolve_config_path(path, env)
        raw_data = _load_toml_file(resolved_path) if resolved_path else {}

        try:
            coerced = _coerce_config_values(raw_data, env)
            return cls(
                server=ServerConfig(**coerced["server"]),
                aws=AwsConfig(**coerced["aws"]),
                session=SessionConfig(**coerced["session"]),
                general=GeneralConfig(**coerced["general"]),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration values: {e}") from e

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigError: If any value is missing or out of range
        """
        validate_server_config(self.server)
        validate_aws_config(self.aws)
        validate_session_config(self.session)

    def redacted(self) -> dict:
        """Return the configuration as a dict with credentials masked."""
        data = asdict(self)
        for name in SECRET_FIELDS:
            if data["aws"].get(name):
                data["aws"][name] = "****"
        return data


def _resolve_config_path(
    cli_path: Path | None,
    env: Mapping[str, str],
) -> Path | None:
    """Resolve configuration file path following search order.

    Raises:
        ConfigError: If an explicitly given path does not exist
    """
    if cli_path:
        cli_path = Path(cli_path)
        if cli_path.exists():
            logger.info("Using config file: %s", cli_path.resolve())
            return cli_path.resolve()
        raise ConfigError(f"Config file not found: {cli_path}")

    candidates = []
    if env_path := env.get("TRANSCRIBE_RELAY_CONFIG"):
        candidates.append(Path(env_path))
    candidates.append(Path("relay.toml"))
    candidates.append(Path.home() / ".config" / "transcribe-relay.toml")

    for candidate in candidates:
        if candidate.exists():
            logger.info("Using config file: %s", candidate.resolve())
            return candidate.resolve()

    logger.info("No config file found, using defaults and environment")
    return None


def _load_toml_file(path: Path) -> dict:
    """Load and parse TOML configuration file.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except Exception as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e


def _coerce_config_values(raw_data: dict, env: Mapping[str, str]) -> dict:
    """Normalize raw TOML data and apply environment overrides.

    Environment variables win over file values, matching how the relay is
    usually deployed (credentials and port injected by the platform).
    """
    coerced = {}

    for section in SECTIONS:
        value = raw_data.get(section, {})
        if not isinstance(value, dict):
            raise ConfigError(f"Section [{section}] must be a table")
        coerced[section] = dict(value)

    aws_section = coerced["aws"]
    for key, env_name in (
        ("region", "AWS_REGION"),
        ("access_key_id", "AWS_ACCESS_KEY_ID"),
        ("secret_access_key", "AWS_SECRET_ACCESS_KEY"),
        ("session_token", "AWS_SESSION_TOKEN"),
    ):
        if env_value := env.get(env_name):
            aws_section[key] = env_value

    if port := env.get("PORT"):
        try:
            coerced["server"]["port"] = int(port)
        except ValueError as e:
            raise ConfigError(f"PORT must be an integer, got '{port}'") from e

    return coerced


def validate_server_config(server_cfg: ServerConfig) -> None:
    """Validate listener configuration.

    Raises:
        ConfigError: If port or message size is invalid
    """
    if not 1 <= server_cfg.port <= 65535:
        raise ConfigError(f"port must be between 1 and 65535, got {server_cfg.port}")
    if server_cfg.max_message_size <= 0:
        raise ConfigError(
            f"max_message_size must be positive, got {server_cfg.max_message_size}"
        )


def validate_aws_config(aws_cfg: AwsConfig) -> None:
    """Validate Transcribe configuration.

    Raises:
        ConfigError: If region is missing, encoding unknown, or keys incomplete
    """
    if not aws_cfg.region:
        raise ConfigError(
            "AWS region is required. Set aws.region in the config file "
            "or the AWS_REGION environment variable."
        )

    if aws_cfg.media_encoding not in VALID_ENCODINGS:
        raise ConfigError(
            f"Invalid media_encoding '{aws_cfg.media_encoding}'. "
            f"Must be one of: {', '.join(VALID_ENCODINGS)}"
        )

    if aws_cfg.sample_rate <= 0:
        raise ConfigError(f"sample_rate must be positive, got {aws_cfg.sample_rate}")

    if bool(aws_cfg.access_key_id) != bool(aws_cfg.secret_access_key):
        raise ConfigError("access_key_id and secret_access_key must be set together")


def validate_session_config(session_cfg: SessionConfig) -> None:
    """Validate per-session relay settings.

    Raises:
        ConfigError: If any limit or interval is non-positive
    """
    for name in ("max_chunk_bytes", "max_buffered_chunks", "max_stream_attempts"):
        value = getattr(session_cfg, name)
        if value < 1:
            raise ConfigError(f"{name} must be at least 1, got {value}")

    for name in ("poll_interval", "heartbeat_interval"):
        value = getattr(session_cfg, name)
        if value <= 0:
            raise ConfigError(f"{name} must be positive, got {value}")

    if session_cfg.reconnect_delay < 0:
        raise ConfigError(
            f"reconnect_delay must be non-negative, got {session_cfg.reconnect_delay}"
        )


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from TOML file.

    Convenience wrapper around Config.from_toml().

    Args:
        path: Explicit config file path (optional)
        env: Environment variables (defaults to os.environ)

    Returns:
        Loaded Config instance

    Raises:
        ConfigError: If config cannot be loaded
    """
    return Config.from_toml(path, env=env)
