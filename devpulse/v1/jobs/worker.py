"""
Long-running job worker: polls the queue and runs periodic maintenance.
"""

import asyncio
import os
import socket

from devpulse.config.logging import bind_worker_context, get_logger
from devpulse.config.settings import Settings
from devpulse.v1.jobs.processor import JobProcessor

logger = get_logger(__name__)


class JobWorker:
    """
    Poll-and-drain worker around a JobProcessor.

    Features:
    - Drains up to ``job_batch_size`` jobs per poll, polling again
      immediately while work remains
    - Reclaims jobs whose processing lease expired (crashed workers)
    - Deletes old terminal jobs on the retention interval
    - Graceful shutdown between batches
    """

    def __init__(
        self,
        processor: JobProcessor,
        settings: Settings,
        job_types: list[str] | None = None,
    ):
        self.processor = processor
        self.settings = settings
        self.job_types = job_types
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{id(self)}"
        self.running = False
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        """Start the worker loops and run until ``stop`` is called."""
        if self.running:
            raise RuntimeError("Worker is already running")

        self.running = True
        self._stopped.clear()
        bind_worker_context(self.worker_id)
        logger.info(
            "Starting job worker",
            batch_size=self.settings.job_batch_size,
            poll_interval_ms=self.settings.job_poll_interval_ms,
            job_types=self.job_types,
        )

        try:
            await asyncio.gather(
                self._worker_loop(),
                self._lease_recovery_loop(),
                self._cleanup_loop(),
            )
        finally:
            self.running = False
            logger.info("Job worker stopped")

    async def stop(self) -> None:
        """Ask all loops to exit after their current iteration."""
        logger.info("Stopping job worker")
        self.running = False
        self._stopped.set()

    async def run_once(self) -> int:
        """Drain one batch; returns the number of jobs processed."""
        summary = await self.processor.drain(
            self.settings.job_batch_size, self.job_types
        )
        return summary.processed

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _worker_loop(self) -> None:
        """Main loop that drains batches of jobs."""
        while self.running:
            try:
                processed = await self.run_once()
            except Exception:
                logger.exception("Error in worker loop")
                await self._sleep(5)  # Back off on errors
                continue

            # A full batch means more work is probably waiting
            if processed < self.settings.job_batch_size:
                await self._sleep(self.settings.job_poll_interval_ms / 1000)

    async def _lease_recovery_loop(self) -> None:
        """Recover jobs that are stuck due to worker crashes."""
        while self.running:
            try:
                async with self.processor.session_factory() as session:
                    await self.processor.service.reclaim_expired_leases(session)
            except Exception:
                logger.exception("Error in stuck job recovery")
            await self._sleep(self.settings.job_lease_sweep_interval_s)

    async def _cleanup_loop(self) -> None:
        """Delete terminal jobs past the retention period."""
        while self.running:
            try:
                async with self.processor.session_factory() as session:
                    await self.processor.service.cleanup_older_than(
                        session, self.settings.job_cleanup_after_days
                    )
            except Exception:
                logger.exception("Error in job cleanup")
            await self._sleep(self.settings.job_cleanup_interval_s)
