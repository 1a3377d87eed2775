from __future__ import annotations

import json
from datetime import datetime

import pytest

from restic_backup.models import BackupStatistics, ChangeStatistics, Outcome, RunStatus
from restic_backup.report import (
    COLORS,
    SIZE_FALLBACK,
    SizeFormatError,
    format_count,
    format_size,
    render_notification,
)

from .conftest import make_snapshot

COMPLETED = datetime(2024, 3, 1, 4, 5, 6)


@pytest.mark.parametrize(
    "size_bytes, expected",
    [
        (0, "0 KB (0.00 MB)"),
        (1023, "0 KB (0.00 MB)"),
        (524288, "512 KB (0.50 MB)"),
        (1048575, "1,023 KB (0.99 MB)"),
        (1048576, "1 MB (0.00 GB)"),
        (2147483648, "2,048 MB (2.00 GB)"),
        (1610612736, "1,536 MB (1.50 GB)"),
    ],
)
def test_format_size(size_bytes, expected):
    assert format_size(size_bytes) == expected


@pytest.mark.parametrize("value", ["12", None, -1, 1.5, True])
def test_format_size_rejects_non_integers(value):
    with pytest.raises(SizeFormatError) as excinfo:
        format_size(value)

    assert excinfo.value.fallback == SIZE_FALLBACK == "0 MB (0.00 GB)"


def test_format_count_groups_thousands():
    assert format_count(1234567) == "1,234,567"
    assert format_count(0) == "0"
    assert format_count(None) == "unknown"


def _fields(document):
    return {item.name: item.value for item in document.fields}


def test_render_success_document():
    outcome = Outcome(
        status=RunStatus.SUCCESS,
        completed_at=COMPLETED,
        snapshot=make_snapshot("0123456789abcdef", 1),
        statistics=BackupStatistics(total_size=2147483648, total_files=12000),
        changes=ChangeStatistics(added=1500, removed=2, changed=30),
        prune_note="No snapshots to prune",
    )

    document = render_notification(outcome, "Homelab", keep_last=14)

    assert document.title == "Homelab Backup ✅ Successful"
    assert document.description == "Backup completed at 2024-03-01 04:05:06"
    assert document.color == COLORS["success"]
    assert _fields(document) == {
        "Snapshot ID": "01234567",
        "Total Size": "2,048 MB (2.00 GB)",
        "Total Files": "12,000",
        "New Files": "1,500",
        "Changed Files": "30",
        "Removed Files": "2",
    }
    assert document.footer == "Retention policy: keeping last 14 backups | No snapshots to prune"


def test_render_backup_failure_document():
    outcome = Outcome(status=RunStatus.BACKUP_FAILED, completed_at=COMPLETED)

    document = render_notification(outcome, "Homelab", keep_last=7)

    assert document.title == "Homelab Backup ❌ Failed"
    assert document.color == COLORS["error"]
    fields = _fields(document)
    assert fields["Snapshot ID"] == "unknown"
    assert fields["Total Size"] == "unknown"
    assert fields["Total Files"] == "unknown"
    assert fields["New Files"] == "0"
    assert document.footer.endswith("| Not attempted")


@pytest.mark.parametrize("status", [RunStatus.PRUNE_FAILED, RunStatus.UNKNOWN])
def test_degraded_statuses_use_warning_color(status):
    document = render_notification(Outcome(status=status, completed_at=COMPLETED), "Homelab", 14)

    assert document.color == COLORS["warning"]


def test_payload_shape():
    outcome = Outcome(status=RunStatus.SUCCESS, completed_at=COMPLETED, prune_note="Pruning disabled")

    payload = json.loads(render_notification(outcome, "Homelab", 14).to_json())

    embed = payload["embeds"][0]
    assert set(embed) == {"title", "description", "color", "fields", "footer"}
    assert isinstance(embed["color"], int)
    assert [f["name"] for f in embed["fields"]] == [
        "Snapshot ID",
        "Total Size",
        "Total Files",
        "New Files",
        "Changed Files",
        "Removed Files",
    ]
    assert all(f["inline"] is True for f in embed["fields"])
    assert embed["footer"]["text"] == "Retention policy: keeping last 14 backups | Pruning disabled"


def test_rendering_is_repeatable():
    outcome = Outcome(
        status=RunStatus.PRUNE_FAILED,
        completed_at=COMPLETED,
        snapshot=make_snapshot("feedface00", 1),
        statistics=BackupStatistics(total_size=5000, total_files=None),
        prune_note="Prune operation failed",
    )

    first = render_notification(outcome, "Homelab", 14).to_json()
    second = render_notification(outcome, "Homelab", 14).to_json()

    assert first == second
