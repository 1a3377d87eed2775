"""Shared fixtures for restic_backup tests."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from restic_backup.config import BackupSettings
from restic_backup.models import BackupResult, BackupStatistics, ChangeStatistics, PruneOutcome, Snapshot
from restic_backup.report import NotificationDocument


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def raw_settings(source_dir: Path) -> Dict[str, str]:
    return {
        "restic_password": "hunter2",
        "aws_access_key": "AKIAEXAMPLE",
        "aws_secret_key": "secret-key",
        "repository": "s3:https://s3.example.com/bucket",
        "region": "eu-central-1",
        "path_style": "true",
        "discord_webhook": "https://discord.example.com/api/webhooks/1/abc",
        "backup_name": "Homelab",
        "backup_path": str(source_dir),
        "enable_prune": "false",
        "keep_last": "14",
    }


@pytest.fixture
def settings(raw_settings: Dict[str, str]) -> BackupSettings:
    return BackupSettings.model_validate(raw_settings)


def make_snapshot(snapshot_id: str, hour: int) -> Snapshot:
    return Snapshot(id=snapshot_id, time=datetime(2024, 3, 1, hour, 0, tzinfo=timezone.utc))


class FakeEngine:
    """In-memory stand-in for ResticClient that records every call."""

    def __init__(
        self,
        backup_ok: bool = True,
        latest: Optional[Snapshot] = None,
        previous: Optional[Snapshot] = None,
        statistics: Optional[BackupStatistics] = None,
        changes: Optional[ChangeStatistics] = None,
        prune_outcome: PruneOutcome = PruneOutcome.SUCCEEDED,
    ) -> None:
        self.backup_ok = backup_ok
        self.latest = latest
        self.previous = previous
        self.statistics = statistics or BackupStatistics()
        self.changes = changes or ChangeStatistics()
        self.prune_outcome = prune_outcome
        self.calls: List[str] = []
        self.diff_error: Optional[Exception] = None

    def run_backup(self, path: str) -> BackupResult:
        self.calls.append("backup")
        return BackupResult(success=self.backup_ok, returncode=0 if self.backup_ok else 1)

    def latest_snapshot(self) -> Optional[Snapshot]:
        self.calls.append("latest")
        return self.latest

    def previous_snapshot(self) -> Optional[Snapshot]:
        self.calls.append("previous")
        return self.previous

    def stats(self, snapshot_id: str) -> BackupStatistics:
        self.calls.append("stats")
        return self.statistics

    def diff(self, previous_id: str, current_id: str) -> ChangeStatistics:
        self.calls.append("diff")
        if self.diff_error:
            raise self.diff_error
        return self.changes

    def prune(self, keep_last: int, retention_days: Optional[int] = None) -> PruneOutcome:
        self.calls.append("prune")
        return self.prune_outcome


class RecordingNotifier:
    def __init__(self) -> None:
        self.documents: List[NotificationDocument] = []
        self.closed = False

    def deliver(self, document: NotificationDocument) -> bool:
        self.documents.append(document)
        return True

    def close(self) -> None:
        self.closed = True
