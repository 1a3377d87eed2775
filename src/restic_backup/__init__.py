"""Single-run restic backup orchestration with Discord reporting."""

from __future__ import annotations

from .config import BackupSettings, load_settings  # noqa: F401
from .pipeline import BackupPipeline  # noqa: F401
