from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from signalbot.models import CycleReport

LOGGER = logging.getLogger(__name__)


class DashboardWriter:
    """Keeps a JSON file with the outcome of the most recent trading cycle."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def write_cycle(self, report: CycleReport) -> None:
        cycle = report.to_dict()
        snapshot = {
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "symbol": report.symbol,
            "dry_run": report.dry_run,
            "healthy": report.error is None and "PROTECTION_GAP" not in report.reason_codes,
            "last_cycle": cycle,
        }
        staging = self.path.with_name(f".{self.path.name}.partial")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            staging.write_text(json.dumps(snapshot, indent=2, default=str), encoding="utf-8")
            staging.replace(self.path)
        except OSError as exc:
            LOGGER.warning("Could not write dashboard snapshot %s: %s", self.path, exc)
