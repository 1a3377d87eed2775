from __future__ import annotations

import logging
import time
import traceback
from datetime import datetime
from typing import Any, Callable, Optional, Protocol, Tuple

from .config import BackupSettings
from .engine import EngineCallError
from .models import (
    BackupResult,
    BackupStatistics,
    ChangeStatistics,
    Outcome,
    PruneOutcome,
    RunStatus,
    Snapshot,
)

LOG = logging.getLogger(__name__)

DEFAULT_SETTLE_SECONDS = 2.0

PRUNE_NOTES = {
    PruneOutcome.SUCCEEDED: "Successfully pruned old backups",
    PruneOutcome.NOTHING_TO_PRUNE: "No snapshots to prune",
    PruneOutcome.FAILED: "Prune operation failed",
}
PRUNE_DISABLED = "Pruning disabled"
PRUNE_NOT_ATTEMPTED = "Not attempted"


class BackupEngine(Protocol):
    def run_backup(self, path: str) -> BackupResult:
        ...

    def latest_snapshot(self) -> Optional[Snapshot]:
        ...

    def previous_snapshot(self) -> Optional[Snapshot]:
        ...

    def stats(self, snapshot_id: str) -> BackupStatistics:
        ...

    def diff(self, previous_id: str, current_id: str) -> ChangeStatistics:
        ...

    def prune(self, keep_last: int, retention_days: Optional[int] = None) -> PruneOutcome:
        ...


class BackupPipeline:
    """Runs backup, stats, diff and prune, folding failures into one Outcome.

    Only the backup step decides whether the run failed. Every later step
    degrades to unknown or zero values so the report still goes out.
    """

    def __init__(
        self,
        engine: BackupEngine,
        settings: BackupSettings,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._engine = engine
        self._settings = settings
        self._settle_seconds = settle_seconds
        self._clock = clock
        self._sleep = sleep

    def run(self) -> Outcome:
        LOG.info("Running backup...")
        try:
            result = self._engine.run_backup(str(self._settings.backup_path))
        except Exception as exc:  # noqa: BLE001
            LOG.error("Backup step raised unexpectedly: %s", exc)
            LOG.debug("Traceback:\n%s", traceback.format_exc())
            return self._finalize(RunStatus.UNKNOWN, prune_note=PRUNE_NOT_ATTEMPTED)

        if not result.success:
            self._log_latest_snapshot()
            return self._finalize(RunStatus.BACKUP_FAILED, prune_note=PRUNE_NOT_ATTEMPTED)

        LOG.info("Backup completed successfully")
        if self._settle_seconds > 0:
            self._sleep(self._settle_seconds)

        snapshot = self._resolve_snapshot()
        statistics = self._gather_statistics(snapshot)
        changes = self._gather_changes(snapshot)
        status, prune_note = self._apply_retention()

        return self._finalize(
            status,
            snapshot=snapshot,
            statistics=statistics,
            changes=changes,
            prune_note=prune_note,
        )

    # Stages ----------------------------------------------------------------
    def _resolve_snapshot(self) -> Optional[Snapshot]:
        LOG.info("Getting snapshot information...")
        snapshot = self._guard("snapshot lookup", self._engine.latest_snapshot, None)
        if snapshot is None:
            LOG.warning("Could not determine the new snapshot; continuing with snapshot id unknown")
        else:
            LOG.info("Snapshot ID: %s", snapshot.short_id)
        return snapshot

    def _gather_statistics(self, snapshot: Optional[Snapshot]) -> BackupStatistics:
        if snapshot is None:
            return BackupStatistics()

        LOG.info("Getting backup statistics...")
        statistics = self._guard(
            "statistics",
            lambda: self._engine.stats(snapshot.id),
            BackupStatistics(),
        )
        LOG.info("Parsed stats - Size: %s, Files: %s", statistics.total_size, statistics.total_files)
        return statistics

    def _gather_changes(self, current: Optional[Snapshot]) -> ChangeStatistics:
        LOG.info("Getting changes statistics...")
        previous = self._guard("previous snapshot lookup", self._engine.previous_snapshot, None)
        if previous is None:
            LOG.info("No previous snapshot found")
            return ChangeStatistics()
        if current is None:
            LOG.warning("Current snapshot unknown; skipping comparison with %s", previous.short_id)
            return ChangeStatistics()

        LOG.info("Comparing snapshots: %s -> %s", previous.short_id, current.short_id)
        changes = self._guard(
            "diff",
            lambda: self._engine.diff(previous.id, current.id),
            ChangeStatistics(),
        )
        LOG.info(
            "Parsed changes - New: %s, Changed: %s, Removed: %s",
            changes.added,
            changes.changed,
            changes.removed,
        )
        return changes

    def _apply_retention(self) -> Tuple[RunStatus, str]:
        if not self._settings.enable_prune:
            LOG.info(PRUNE_DISABLED)
            return RunStatus.SUCCESS, PRUNE_DISABLED

        LOG.info(
            "Applying retention policy (keeping last %s backups globally)...",
            self._settings.keep_last,
        )
        outcome = self._guard(
            "prune",
            lambda: self._engine.prune(self._settings.keep_last, self._settings.keep_within_days),
            PruneOutcome.FAILED,
        )
        note = PRUNE_NOTES[outcome]
        LOG.info(note)
        if outcome is PruneOutcome.FAILED:
            return RunStatus.PRUNE_FAILED, note
        return RunStatus.SUCCESS, note

    # Internal helpers ------------------------------------------------------
    def _log_latest_snapshot(self) -> None:
        snapshot = self._guard("snapshot lookup", self._engine.latest_snapshot, None)
        LOG.info("Latest snapshot in repository: %s", snapshot.short_id if snapshot else "unknown")

    def _guard(self, stage: str, call: Callable[[], Any], fallback: Any) -> Any:
        try:
            return call()
        except EngineCallError as exc:
            LOG.warning("Failed to get %s: %s", stage, exc)
        except Exception as exc:  # noqa: BLE001
            LOG.error("Unexpected error during %s: %s", stage, exc)
            LOG.debug("Traceback:\n%s", traceback.format_exc())
        return fallback

    def _finalize(self, status: RunStatus, **fields: Any) -> Outcome:
        outcome = Outcome(status=status, completed_at=self._clock(), **fields)
        LOG.info("Backup run finished with status %s", outcome.status.value)
        return outcome
