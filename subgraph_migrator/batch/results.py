# subgraph_migrator/batch/results.py

import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..core.logging import LoggingMixin
from ..types.results import Checkpoint, JobResult


SUCCESS_FILE = "success.txt"
FAILED_FILE = "failed.txt"
STOPPED_AT_FILE = "stopped_at.txt"
REMAINING_FILE = "remaining_hashes.txt"


class ResultLedger(LoggingMixin):
    """Success and failure lists of a batch run, one lock per list."""

    def __init__(self, results_dir: Path):
        self.results_dir = results_dir
        self._locks: Dict[str, threading.Lock] = {
            SUCCESS_FILE: threading.Lock(),
            FAILED_FILE: threading.Lock(),
        }

    def record(self, result: JobResult) -> None:
        name = SUCCESS_FILE if result.succeeded else FAILED_FILE
        with self._locks[name]:
            with open(self.results_dir / name, "a") as f:
                f.write(f"{result.deployment_hash}\n")

    def succeeded(self) -> List[str]:
        return self._read(SUCCESS_FILE)

    def failed(self) -> List[str]:
        return self._read(FAILED_FILE)

    def _read(self, name: str) -> List[str]:
        path = self.results_dir / name
        with self._locks[name]:
            if not path.exists():
                return []
            return [line.strip() for line in path.read_text().splitlines() if line.strip()]

    def write_checkpoint(self,
                         index: int,
                         hashes: Sequence[str],
                         hash_file: Optional[Path] = None,
                         reason: Optional[str] = None) -> Checkpoint:
        """Persist where the run stopped; ``index`` counts attempted jobs."""
        total = len(hashes)
        last_hash = hashes[index - 1] if index > 0 else None
        stopped_at = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        remaining_file = self.results_dir / REMAINING_FILE
        remaining_file.write_text("".join(f"{h}\n" for h in hashes[index:]))

        source = f"'{hash_file}'" if hash_file else "the original hash file"
        lines = [
            f"Batch migration stopped ({reason or 'stop requested'})",
            "",
            "Stopped at:",
            f"  Index: {index} of {total}",
            f"  Last hash processed: {last_hash or 'none'}",
            f"  Timestamp: {stopped_at}",
            "",
            f"Remaining deployments ({total - index}) from {source} were written to:",
            f"  {remaining_file}",
            "",
            "To resume:",
            f"  python -m subgraph_migrator batch '{remaining_file}'",
        ]
        (self.results_dir / STOPPED_AT_FILE).write_text("\n".join(lines) + "\n")

        checkpoint = Checkpoint(index=index, total=total, last_hash=last_hash,
                                stopped_at=stopped_at, remaining_file=remaining_file)
        self.log_warning(f"Stop information written to: {self.results_dir / STOPPED_AT_FILE}",
                         run_id=self.results_dir.name)
        return checkpoint
