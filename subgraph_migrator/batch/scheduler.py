# subgraph_migrator/batch/scheduler.py
"""
Batch migration of many deployments.

Each deployment is migrated by its own ``migrate --yes`` process with its
own log file and temp directory. Jobs are dispatched in waves of
``parallelism``; a wave always drains completely before the stop token is
looked at again.
"""

import os
import secrets
import shutil
import subprocess
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence

from ..core.logging import LoggingMixin
from ..types.config import BatchConfig
from ..types.results import BatchSummary, JobResult
from .cancellation import CancellationToken, STOP_FLAG_NAME
from .results import ResultLedger


DEFAULT_MIGRATE_COMMAND = [sys.executable, "-m", "subgraph_migrator", "migrate"]

Runner = Callable[..., subprocess.CompletedProcess]


def new_run_id(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"{now:%Y%m%d_%H%M%S}_{os.getpid()}_{secrets.token_hex(4)}"


class BatchScheduler(LoggingMixin):

    def __init__(self,
                 config: BatchConfig,
                 token: Optional[CancellationToken] = None,
                 runner: Runner = subprocess.run,
                 environ: Optional[Mapping[str, str]] = None,
                 run_id: Optional[str] = None):
        if config.parallelism < 1:
            raise ValueError("Parallelism must be a positive integer")

        self.config = config
        self.run_id = run_id or new_run_id()
        self.results_dir = Path(config.results_root) / f"batch_migration_{self.run_id}"
        self.token = token or CancellationToken(flag_file=self.results_dir / STOP_FLAG_NAME)
        self.runner = runner
        self.environ = dict(os.environ if environ is None else environ)
        self.ledger = ResultLedger(self.results_dir)

    @property
    def migrate_command(self) -> List[str]:
        return list(self.config.migrate_command or DEFAULT_MIGRATE_COMMAND)

    def prepare(self) -> Path:
        self.results_dir.mkdir(parents=True, exist_ok=True)
        return self.results_dir

    def run(self, hashes: Sequence[str]) -> BatchSummary:
        self.prepare()
        total = len(hashes)
        parallelism = self.config.parallelism

        self.log_info(f"Starting batch migration of {total} deployments", run_id=self.run_id)
        if parallelism > 1:
            self.log_warning("Running with parallelism > 1. Ensure your databases can handle "
                             "concurrent migrations.", run_id=self.run_id)

        index = 0
        checkpoint = None
        with ThreadPoolExecutor(max_workers=parallelism, thread_name_prefix="migration") as pool:
            while index < total:
                if self.token.stop_requested:
                    self.log_warning("Stopping batch migration as requested", run_id=self.run_id)
                    checkpoint = self.ledger.write_checkpoint(index, hashes, self.config.hash_file,
                                                              self.token.reason)
                    break

                wave = hashes[index:index + parallelism]
                futures = [
                    pool.submit(self.run_job, index + offset + 1, deployment_hash)
                    for offset, deployment_hash in enumerate(wave)
                ]
                for future in futures:
                    future.result()
                index += len(wave)

        summary = BatchSummary(
            run_id=self.run_id,
            results_dir=self.results_dir,
            total=total,
            succeeded=self.ledger.succeeded(),
            failed=self.ledger.failed(),
            checkpoint=checkpoint,
        )
        self.log_info(f"Batch finished: {len(summary.succeeded)} succeeded, {len(summary.failed)} failed, "
                      f"{summary.remaining} remaining", run_id=self.run_id, outcome=summary.exit_code.name)
        return summary

    def run_job(self, index: int, deployment_hash: str) -> JobResult:
        """Run one migration process; a failure here never affects sibling jobs."""
        log_path = self.results_dir / f"{deployment_hash}.log"
        temp_dir = self.results_dir / f"temp_{deployment_hash}"
        command = self.migrate_command + [deployment_hash, "--yes"]
        env = dict(self.environ, TEMP_DIR=str(temp_dir))

        self.log_info(f"Starting migration: {deployment_hash}", job_index=index, deployment=deployment_hash)
        started = time.monotonic()
        try:
            returncode = self._run_process(command, env, log_path)
        except Exception as e:
            self.log_error(f"Migration job could not run: {type(e).__name__}: {e}", job_index=index,
                           deployment=deployment_hash)
            returncode = -1
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

        result = JobResult(index=index, deployment_hash=deployment_hash, succeeded=returncode == 0,
                           returncode=returncode, log_path=log_path,
                           seconds=round(time.monotonic() - started, 3))
        self.ledger.record(result)

        if result.succeeded:
            self.log_info(f"SUCCESS: {deployment_hash}", job_index=index, deployment=deployment_hash,
                          execution_time=result.seconds)
        else:
            self.log_error(f"FAILED: {deployment_hash} (see {log_path})", job_index=index,
                           deployment=deployment_hash, execution_time=result.seconds)
        return result

    def _run_process(self, command: List[str], env: Mapping[str, str], log_path: Path) -> int:
        with open(log_path, "w") as log_file:
            try:
                completed = self.runner(command, stdin=subprocess.DEVNULL, stdout=log_file,
                                        stderr=subprocess.STDOUT, env=env)
            except OSError as e:
                log_file.write(f"Failed to start migration process: {e}\n")
                return -1
        return completed.returncode
