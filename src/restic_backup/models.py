from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

SHORT_ID_LENGTH = 8
UNKNOWN = "unknown"


@dataclass(frozen=True)
class Snapshot:
    id: str
    time: datetime

    @property
    def short_id(self) -> str:
        return self.id[:SHORT_ID_LENGTH]


@dataclass(frozen=True)
class BackupResult:
    success: bool
    returncode: int


@dataclass(frozen=True)
class BackupStatistics:
    """Size and file count of a snapshot; ``None`` means unknown."""

    total_size: Optional[int] = None
    total_files: Optional[int] = None


@dataclass(frozen=True)
class ChangeStatistics:
    added: int = 0
    removed: int = 0
    changed: int = 0


class PruneOutcome(str, enum.Enum):
    SUCCEEDED = "succeeded"
    NOTHING_TO_PRUNE = "nothing_to_prune"
    FAILED = "failed"


class RunStatus(str, enum.Enum):
    SUCCESS = "success"
    PRUNE_FAILED = "prune_failed"
    BACKUP_FAILED = "backup_failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Outcome:
    status: RunStatus
    completed_at: datetime
    snapshot: Optional[Snapshot] = None
    statistics: BackupStatistics = field(default_factory=BackupStatistics)
    changes: ChangeStatistics = field(default_factory=ChangeStatistics)
    prune_note: str = "Not attempted"

    @property
    def backup_succeeded(self) -> bool:
        return self.status in (RunStatus.SUCCESS, RunStatus.PRUNE_FAILED)

    @property
    def snapshot_label(self) -> str:
        return self.snapshot.short_id if self.snapshot else UNKNOWN

    @property
    def exit_code(self) -> int:
        return 0 if self.backup_succeeded else 1
