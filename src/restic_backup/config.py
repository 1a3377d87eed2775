from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator, model_validator

DEFAULT_KEEP_LAST = 14
CONFIG_FLAG = "--config"


class ConfigurationError(Exception):
    """Raised when the backup run configuration is invalid."""


# Flag name -> setting name. Every flag takes exactly one value.
FLAG_SETTINGS: Dict[str, str] = {
    "--restic-password": "restic_password",
    "--aws-access-key": "aws_access_key",
    "--aws-secret-key": "aws_secret_key",
    "--repository": "repository",
    "--region": "region",
    "--path-style": "path_style",
    "--discord-webhook": "discord_webhook",
    "--backup-name": "backup_name",
    "--backup-path": "backup_path",
    "--enable-prune": "enable_prune",
    "--keep-last": "keep_last",
    "--keep-within-days": "keep_within_days",
}

REQUIRED_SETTINGS = (
    "restic_password",
    "aws_access_key",
    "aws_secret_key",
    "repository",
    "region",
    "path_style",
    "discord_webhook",
    "backup_name",
    "backup_path",
    "enable_prune",
    "keep_last",
)

# Orchestration-only values, never handed to restic.
ORCHESTRATION_ONLY = ("discord_webhook", "backup_name", "backup_path")


class BackupSettings(BaseModel):
    """Resolved, immutable settings for one backup run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    restic_password: SecretStr
    aws_access_key: str
    aws_secret_key: SecretStr
    repository: str = Field(description="restic repository connection string.")
    region: str
    path_style: str
    discord_webhook: str
    backup_name: str = Field(description="Display name used in notifications.")
    backup_path: Path
    enable_prune: bool = True
    keep_last: int = Field(default=DEFAULT_KEEP_LAST, ge=1)
    keep_within_days: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="before")
    @classmethod
    def _require_values(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        missing = [name for name in REQUIRED_SETTINGS if _is_blank(values.get(name, _DEFAULTS.get(name)))]
        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")
        return values

    @field_validator("enable_prune", mode="before")
    @classmethod
    def _parse_prune_flag(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered not in ("true", "false"):
                raise ValueError(f"enable_prune must be 'true' or 'false', got '{value}'")
            return lowered == "true"
        return value

    @field_validator("backup_path")
    @classmethod
    def _require_directory(cls, value: Path) -> Path:
        value = value.expanduser()
        if not value.is_dir():
            raise ValueError(f"Backup path does not exist: {value}")
        return value

    def engine_environment(self) -> Dict[str, str]:
        """Environment entries exported to every restic invocation."""
        return {
            "RESTIC_PASSWORD": self.restic_password.get_secret_value(),
            "AWS_ACCESS_KEY_ID": self.aws_access_key,
            "AWS_SECRET_ACCESS_KEY": self.aws_secret_key.get_secret_value(),
            "RESTIC_REPOSITORY": self.repository,
            "AWS_DEFAULT_REGION": self.region,
            "S3_FORCE_PATH_STYLE": self.path_style,
            "ENABLE_PRUNE": "true" if self.enable_prune else "false",
            "KEEP_LAST": str(self.keep_last),
        }

    def describe(self) -> Dict[str, str]:
        """Loggable view of the settings with secrets masked."""
        return {name: str(value) for name, value in self.model_dump().items()}


_DEFAULTS: Dict[str, Any] = {"enable_prune": True, "keep_last": DEFAULT_KEEP_LAST}


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, SecretStr):
        value = value.get_secret_value()
    return isinstance(value, str) and not value.strip()


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise ConfigurationError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="restic-backup",
        description="Run a restic backup, apply retention and report to a Discord webhook.",
        allow_abbrev=False,
        add_help=False,
    )
    for flag, dest in FLAG_SETTINGS.items():
        parser.add_argument(flag, dest=dest, metavar="VALUE")
    parser.add_argument(CONFIG_FLAG, help="Optional YAML file providing default settings.")
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(_pair_values(sys.argv[1:] if argv is None else argv))


def _pair_values(argv: Sequence[str]) -> List[str]:
    """Join each known flag with the token after it as ``--flag=value``.

    Values are taken verbatim, so a password starting with ``-`` is not
    mistaken for another option. Unknown tokens pass through for argparse
    to reject.
    """
    paired: List[str] = []
    index = 0
    while index < len(argv):
        token = argv[index]
        if token in FLAG_SETTINGS or token == CONFIG_FLAG:
            if index + 1 >= len(argv):
                raise ConfigurationError(f"argument {token}: expected one argument")
            paired.append(f"{token}={argv[index + 1]}")
            index += 2
        else:
            paired.append(token)
            index += 1
    return paired


def load_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            raw = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return raw


def load_settings(argv: Optional[Sequence[str]] = None) -> BackupSettings:
    args = parse_args(argv)

    values: Dict[str, Any] = {}
    if args.config:
        values.update(load_config_file(Path(args.config).expanduser()))

    for dest in FLAG_SETTINGS.values():
        value = getattr(args, dest)
        if value is not None:
            values[dest] = value

    try:
        return BackupSettings.model_validate(values)
    except ValidationError as exc:
        raise ConfigurationError(_summarize(exc)) from exc


def _summarize(exc: ValidationError) -> str:
    messages: List[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages)
