from __future__ import annotations

import logging
import os
import shutil
import sys
from typing import Optional, Sequence

from .config import BackupSettings, ConfigurationError, load_settings
from .engine import DEFAULT_BINARY, ResticClient
from .logger import configure_logging, process_log
from .notify import DiscordNotifier
from .pipeline import DEFAULT_SETTLE_SECONDS, BackupEngine, BackupPipeline
from .report import render_notification

LOG = logging.getLogger(__name__)


class RequirementError(Exception):
    """Raised when a required external command is not installed."""


def check_requirements(commands: Sequence[str]) -> None:
    for command in commands:
        if shutil.which(command) is None:
            raise RequirementError(f"{command} is not installed")


def log_settings(settings: BackupSettings) -> None:
    LOG.info("Parsed configuration:")
    for key, value in settings.describe().items():
        LOG.info("  %s: %s", key, value)


def run_backup(
    settings: BackupSettings,
    engine: Optional[BackupEngine] = None,
    notifier: Optional[DiscordNotifier] = None,
    settle_seconds: float = DEFAULT_SETTLE_SECONDS,
) -> int:
    """Run the pipeline, send the report and return the process exit code."""
    if engine is None:
        engine = ResticClient(
            repository=settings.repository,
            environment=settings.engine_environment(),
            binary=os.getenv("RESTIC_BINARY", DEFAULT_BINARY),
        )
    owns_notifier = notifier is None
    if notifier is None:
        notifier = DiscordNotifier(settings.discord_webhook)

    outcome = BackupPipeline(engine, settings, settle_seconds=settle_seconds).run()
    document = render_notification(outcome, settings.backup_name, settings.keep_last)
    try:
        notifier.deliver(document)
    finally:
        if owns_notifier:
            notifier.close()

    LOG.info("Backup process completed with exit code %s", outcome.exit_code)
    return outcome.exit_code


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))

    with process_log() as log_path:
        LOG.info("Starting backup process")
        LOG.debug("Process log at %s", log_path)

        try:
            check_requirements([os.getenv("RESTIC_BINARY", DEFAULT_BINARY)])
        except RequirementError as exc:
            LOG.error("Error: %s", exc)
            return 1

        try:
            settings = load_settings(argv)
        except ConfigurationError as exc:
            LOG.error("Configuration error: %s", exc)
            return 1

        log_settings(settings)
        LOG.info("Backup path: %s", settings.backup_path)
        LOG.info("Repository: %s", settings.repository)
        return run_backup(settings)


if __name__ == "__main__":
    sys.exit(main())
