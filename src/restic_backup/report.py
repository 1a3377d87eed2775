from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .models import UNKNOWN, Outcome, RunStatus

LOG = logging.getLogger(__name__)

KIB = 1024
MIB = KIB * 1024
GIB = MIB * 1024

SIZE_FALLBACK = "0 MB (0.00 GB)"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

COLORS = {
    "success": 3066993,
    "warning": 16098851,
    "error": 15158332,
}

STATUS_PRESENTATION = {
    RunStatus.SUCCESS: ("✅ Successful", "success"),
    RunStatus.PRUNE_FAILED: ("⚠️ Backup OK, Prune Failed", "warning"),
    RunStatus.BACKUP_FAILED: ("❌ Failed", "error"),
    RunStatus.UNKNOWN: ("❔ Status Unknown", "warning"),
}


class SizeFormatError(ValueError):
    """Raised when a byte count cannot be formatted."""

    def __init__(self, value: Any) -> None:
        super().__init__(f"Cannot format size from {value!r}")
        self.value = value
        self.fallback = SIZE_FALLBACK


def format_size(size_bytes: Any) -> str:
    """Human-readable size with a secondary unit in parentheses.

    Below 1 MiB the primary figure is KB with MB alongside; from 1 MiB up it
    is MB with GB alongside. Integer parts are floored and the two decimals
    truncated.
    """
    if isinstance(size_bytes, bool) or not isinstance(size_bytes, int) or size_bytes < 0:
        raise SizeFormatError(size_bytes)

    if size_bytes < MIB:
        return f"{size_bytes // KIB:,} KB ({_hundredths(size_bytes, MIB)} MB)"
    return f"{size_bytes // MIB:,} MB ({_hundredths(size_bytes, GIB)} GB)"


def format_count(value: Optional[int]) -> str:
    if value is None:
        return UNKNOWN
    return f"{value:,}"


def _hundredths(size_bytes: int, unit: int) -> str:
    scaled = size_bytes * 100 // unit
    return f"{scaled // 100}.{scaled % 100:02d}"


@dataclass(frozen=True)
class EmbedField:
    name: str
    value: str
    inline: bool = True


@dataclass(frozen=True)
class NotificationDocument:
    title: str
    description: str
    color: int
    footer: str
    fields: List[EmbedField] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "embeds": [
                {
                    "title": self.title,
                    "description": self.description,
                    "color": self.color,
                    "fields": [
                        {"name": item.name, "value": item.value, "inline": item.inline}
                        for item in self.fields
                    ],
                    "footer": {"text": self.footer},
                }
            ]
        }

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), ensure_ascii=False)


def render_notification(outcome: Outcome, backup_name: str, keep_last: int) -> NotificationDocument:
    label, severity = STATUS_PRESENTATION[outcome.status]
    changes = outcome.changes
    return NotificationDocument(
        title=f"{backup_name} Backup {label}",
        description=f"Backup completed at {outcome.completed_at.strftime(TIMESTAMP_FORMAT)}",
        color=COLORS[severity],
        fields=[
            EmbedField("Snapshot ID", outcome.snapshot_label),
            EmbedField("Total Size", _size_label(outcome.statistics.total_size)),
            EmbedField("Total Files", format_count(outcome.statistics.total_files)),
            EmbedField("New Files", format_count(changes.added)),
            EmbedField("Changed Files", format_count(changes.changed)),
            EmbedField("Removed Files", format_count(changes.removed)),
        ],
        footer=f"Retention policy: keeping last {keep_last} backups | {outcome.prune_note}",
    )


def _size_label(total_size: Optional[int]) -> str:
    if total_size is None:
        return UNKNOWN
    try:
        return format_size(total_size)
    except SizeFormatError as exc:
        LOG.warning("%s; reporting %s", exc, exc.fallback)
        return exc.fallback
