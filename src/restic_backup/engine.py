from __future__ import annotations

import json
import logging
import os
import re
import subprocess
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from .models import BackupResult, BackupStatistics, ChangeStatistics, PruneOutcome, Snapshot

LOG = logging.getLogger(__name__)

DEFAULT_BINARY = "restic"
NOTHING_REMOVED_MARKER = "no snapshots were removed"

_FRACTION = re.compile(r"\.(\d+)")

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class EngineCallError(Exception):
    """Raised when a restic invocation fails or returns unusable output."""


class ResticClient:
    """Blocking facade over the restic command line."""

    def __init__(
        self,
        repository: str,
        environment: Dict[str, str],
        binary: str = DEFAULT_BINARY,
        runner: Runner = subprocess.run,
    ) -> None:
        self._repository = repository
        self._env = {**os.environ, **environment}
        self._binary = binary
        self._runner = runner

    # Operations ------------------------------------------------------------
    def run_backup(self, path: str) -> BackupResult:
        LOG.info("Command: %s -r %s backup %s", self._binary, self._repository, path)
        try:
            completed = self._execute(["backup", str(path)], check=False)
        except EngineCallError as exc:
            LOG.error("Backup could not be started: %s", exc)
            return BackupResult(success=False, returncode=127)

        _log_output(completed)
        if completed.returncode != 0:
            LOG.error("Backup failed with exit code %s", completed.returncode)
            return BackupResult(success=False, returncode=completed.returncode)
        return BackupResult(success=True, returncode=0)

    def list_snapshots(self) -> List[Snapshot]:
        """Return every snapshot in the repository, newest first."""
        payload = self._json(["snapshots", "--json"])
        if not isinstance(payload, list):
            raise EngineCallError("snapshots output is not a list")

        snapshots = []
        for entry in payload:
            if not isinstance(entry, dict) or not entry.get("id"):
                raise EngineCallError(f"Malformed snapshot entry: {entry!r}")
            snapshots.append(Snapshot(id=str(entry["id"]), time=_parse_time(entry.get("time"))))
        snapshots.sort(key=lambda snapshot: snapshot.time, reverse=True)
        return snapshots

    def latest_snapshot(self) -> Optional[Snapshot]:
        return self._snapshot_at(0)

    def previous_snapshot(self) -> Optional[Snapshot]:
        return self._snapshot_at(1)

    def stats(self, snapshot_id: str) -> BackupStatistics:
        """Size and file count for ``snapshot_id``.

        The snapshot summary is the primary size source. ``restic stats``
        supplies the file count and stands in for the size when the summary
        reports zero or cannot be read. Each field falls back to unknown on
        its own.
        """
        summary_size: Optional[int] = None
        summary_files: Optional[int] = None
        try:
            entries = self._json(["snapshots", "--json", snapshot_id])
            entry = entries[0] if isinstance(entries, list) and entries else {}
            summary = entry.get("summary") or {}
            summary_size = _as_count(entry.get("size", summary.get("total_bytes_processed")))
            summary_files = _as_count(summary.get("total_files_processed"))
        except (EngineCallError, AttributeError) as exc:
            LOG.warning("Snapshot summary unavailable for %s: %s", snapshot_id, exc)

        stats_size: Optional[int] = None
        stats_files: Optional[int] = None
        try:
            stats = self._json(["stats", "--json", snapshot_id])
            if not isinstance(stats, dict):
                raise EngineCallError("stats output is not an object")
            stats_size = _as_count(stats.get("total_size"))
            stats_files = _as_count(stats.get("total_file_count"))
        except EngineCallError as exc:
            LOG.warning("Repository stats unavailable for %s: %s", snapshot_id, exc)

        total_size = summary_size
        if not total_size and stats_size is not None:
            total_size = stats_size
        total_files = stats_files if stats_files is not None else summary_files
        return BackupStatistics(total_size=total_size, total_files=total_files)

    def diff(self, previous_id: str, current_id: str) -> ChangeStatistics:
        completed = self._execute(["diff", "--json", previous_id, current_id])
        LOG.debug("Raw diff output: %s", completed.stdout)

        for line in completed.stdout.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                message = json.loads(line)
            except ValueError:
                LOG.debug("Skipping non-JSON diff line: %s", line)
                continue
            if isinstance(message, dict) and message.get("message_type") == "statistics":
                return ChangeStatistics(
                    added=_as_count(_nested(message, "added", "files")) or 0,
                    removed=_as_count(_nested(message, "removed", "files")) or 0,
                    changed=_as_count(message.get("changed_files")) or 0,
                )

        LOG.warning("No statistics message in diff output")
        return ChangeStatistics()

    def prune(self, keep_last: int, retention_days: Optional[int] = None) -> PruneOutcome:
        """Apply retention across the whole repository, ignoring host and path."""
        args = ["forget", "--keep-last", str(keep_last)]
        if retention_days:
            args += ["--keep-within", f"{retention_days}d"]
        args += ["--group-by", "", "--prune"]

        try:
            completed = self._execute(args)
        except EngineCallError as exc:
            LOG.error("Prune operation failed: %s", exc)
            return PruneOutcome.FAILED

        output = f"{completed.stdout}\n{completed.stderr}"
        LOG.info("Prune output: %s", output.strip())
        if NOTHING_REMOVED_MARKER in output:
            return PruneOutcome.NOTHING_TO_PRUNE
        return PruneOutcome.SUCCEEDED

    # Internal helpers ------------------------------------------------------
    def _snapshot_at(self, index: int) -> Optional[Snapshot]:
        try:
            snapshots = self.list_snapshots()
        except EngineCallError as exc:
            LOG.warning("Could not list snapshots: %s", exc)
            return None
        if len(snapshots) <= index:
            return None
        return snapshots[index]

    def _json(self, args: Sequence[str]) -> Any:
        completed = self._execute(args)
        try:
            return json.loads(completed.stdout)
        except ValueError as exc:
            raise EngineCallError(f"restic {args[0]} returned invalid JSON") from exc

    def _execute(self, args: Sequence[str], check: bool = True) -> "subprocess.CompletedProcess[str]":
        cmd = [self._binary, "-r", self._repository, *args]
        try:
            return self._runner(cmd, env=self._env, check=check, capture_output=True, text=True)
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            LOG.debug("restic %s failed: %s", args[0], stderr)
            raise EngineCallError(f"restic {args[0]} exited with {exc.returncode}: {stderr}") from exc
        except OSError as exc:
            raise EngineCallError(f"restic {args[0]} could not be executed: {exc}") from exc


def _log_output(completed: "subprocess.CompletedProcess[str]") -> None:
    for stream in (completed.stdout, completed.stderr):
        for line in (stream or "").splitlines():
            LOG.debug("restic: %s", line)


def _parse_time(value: Any) -> datetime:
    if not isinstance(value, str) or not value:
        raise EngineCallError(f"Snapshot time missing or invalid: {value!r}")
    text = _FRACTION.sub(_six_digit_fraction, value.strip(), count=1)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise EngineCallError(f"Unparsable snapshot time: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _six_digit_fraction(match: "re.Match[str]") -> str:
    # restic drops trailing zeros; older fromisoformat wants exactly 3 or 6 digits.
    return "." + match.group(1)[:6].ljust(6, "0")


def _as_count(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _nested(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data
