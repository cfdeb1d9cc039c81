from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

# Environment variable names for secrets
ENV_BOT_TOKEN = "PDFRELAY_BOT_TOKEN"
ENV_ILOVEPDF_PUBLIC_KEY = "ILOVEPDF_PUBLIC_KEY"

LOCAL_CONFIG_NAME = Path(".pdfrelay") / "pdfrelay.toml"
HOME_CONFIG_PATH = Path.home() / ".pdfrelay" / "pdfrelay.toml"

MAX_UPLOAD_BYTES = 20 * 1024 * 1024

CompressionLevel = Literal["low", "recommended", "extreme"]


class ConfigError(RuntimeError):
    pass


class ILovePdfSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    public_key: SecretStr | None = None
    compression_level: CompressionLevel = "recommended"
    timeout_s: float = 120.0


class CompressSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    retry_delays: tuple[float, float] = (2.0, 5.0)


class LimitSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_upload_bytes: int = MAX_UPLOAD_BYTES
    enforce_size_limit: bool = False


class RelaySettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    bot_token: SecretStr | None = None
    storage_dir: str = "storage"
    ilovepdf: ILovePdfSettings = Field(default_factory=ILovePdfSettings)
    compress: CompressSettings = Field(default_factory=CompressSettings)
    limits: LimitSettings = Field(default_factory=LimitSettings)


def _config_candidates() -> list[Path]:
    candidates = [Path.cwd() / LOCAL_CONFIG_NAME, HOME_CONFIG_PATH]
    if candidates[0] == candidates[1]:
        return [candidates[0]]
    return candidates


def _read_config(cfg_path: Path) -> dict:
    try:
        raw = cfg_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Missing config file {cfg_path}.") from None
    except OSError as e:
        raise ConfigError(f"Failed to read config file {cfg_path}: {e}") from e
    try:
        return tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Malformed TOML in {cfg_path}: {e}") from None


def load_config(path: str | Path | None = None) -> tuple[dict, Path]:
    if path:
        cfg_path = Path(path).expanduser()
        return _read_config(cfg_path), cfg_path

    for candidate in _config_candidates():
        if candidate.is_file():
            return _read_config(candidate), candidate

    raise ConfigError(
        f"Missing pdfrelay config. Create {LOCAL_CONFIG_NAME} or {HOME_CONFIG_PATH}."
    )


def _env_value(name: str) -> str | None:
    value = os.environ.get(name)
    if value and value.strip():
        return value.strip()
    return None


def _secret(value: SecretStr | None) -> str:
    return value.get_secret_value().strip() if value else ""


def load_settings(config: dict, config_path: Path) -> RelaySettings:
    """Validate a parsed config and apply environment overrides.

    PDFRELAY_BOT_TOKEN and ILOVEPDF_PUBLIC_KEY take precedence over the file.
    """
    try:
        settings = RelaySettings.model_validate(config)
    except ValidationError as e:
        raise ConfigError(f"Invalid config in {config_path}: {e}") from None

    bot_token = _env_value(ENV_BOT_TOKEN) or _secret(settings.bot_token)
    if not bot_token:
        raise ConfigError(
            f"Missing bot token. Set {ENV_BOT_TOKEN} environment variable "
            f"or add `bot_token` to {config_path}."
        )
    public_key = _env_value(ENV_ILOVEPDF_PUBLIC_KEY) or _secret(
        settings.ilovepdf.public_key
    )
    if not public_key:
        raise ConfigError(
            f"Missing iLovePDF public key. Set {ENV_ILOVEPDF_PUBLIC_KEY} "
            f"environment variable or add `[ilovepdf] public_key` to {config_path}."
        )
    if any(delay < 0 for delay in settings.compress.retry_delays):
        raise ConfigError(
            f"Invalid `[compress] retry_delays` in {config_path}; "
            "expected non-negative numbers."
        )
    if settings.limits.max_upload_bytes <= 0:
        raise ConfigError(
            f"Invalid `[limits] max_upload_bytes` in {config_path}; "
            "expected a positive integer."
        )

    return settings.model_copy(
        update={
            "bot_token": SecretStr(bot_token),
            "ilovepdf": settings.ilovepdf.model_copy(
                update={"public_key": SecretStr(public_key)}
            ),
        }
    )


def resolve_storage_dir(settings: RelaySettings, config_path: Path) -> Path:
    storage = Path(settings.storage_dir).expanduser()
    if storage.is_absolute():
        return storage
    return config_path.parent / storage
