"""Run archive — keeps finished run records as local JSON files.

Layout: {base_path}/{run_id}.json

Runs hold no persistent state beyond their outputs and what the store
keeps; the archive is a log of finished runs for later inspection.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from alephbuild.core.hasher import canonical_json_bytes
from alephbuild.models.runs import PipelineRun

logger = logging.getLogger(__name__)


class RunArchive:
    """Writes finished ``PipelineRun`` records to local JSON files.

    Parameters
    ----------
    base_path:
        Directory for run records.
    """

    def __init__(self, base_path: Path | str) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    def record(self, run: PipelineRun) -> Path:
        """Write *run* and return the file it was written to."""
        target = self._base / f"{run.run_id}.json"
        target.write_bytes(canonical_json_bytes(run.model_dump(mode="json")))
        logger.debug("RunArchive: wrote %s to %s", run.run_id, target)
        return target

    def list_runs(self) -> list[Path]:
        return sorted(self._base.glob("*.json"))

    def load(self, run_id: str) -> PipelineRun:
        path = self._base / f"{run_id}.json"
        if not path.exists():
            raise FileNotFoundError(f"Run record not found: {run_id}")
        return PipelineRun.model_validate(json.loads(path.read_bytes()))
