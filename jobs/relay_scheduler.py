"""
Swap Relay Scheduler

Runs the atomic swap relay cycle on a fixed interval. APScheduler enforces a
single running instance and coalesces missed ticks, so an overrunning cycle
delays the next one instead of overlapping it.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore

from config import Config

logger = logging.getLogger(__name__)

RELAY_JOB_ID = "atomic_swap_relay"


class SwapRelayScheduler:
    """Interval scheduler for AtomicSwapRelay.process_pending_swaps"""

    def __init__(self, relay, interval_seconds: Optional[int] = None):
        self.relay = relay
        self.interval_seconds = interval_seconds or Config.RELAY_POLL_INTERVAL_SECONDS

        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': AsyncIOExecutor()
        }
        job_defaults = {
            'coalesce': True,  # Prevent job pileup
            'max_instances': 1,  # Single instance enforcement
            'misfire_grace_time': Config.RELAY_MISFIRE_GRACE_SECONDS
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

    async def run_relay_cycle(self) -> Dict[str, Any]:
        """Scheduled entry point; the relay itself never raises"""
        return await self.relay.process_pending_swaps()

    def setup_jobs(self):
        """Register the relay job, replacing any previous registration"""
        self.scheduler.add_job(
            self.run_relay_cycle,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=RELAY_JOB_ID,
            name="🔄 Atomic Swap Relay - Escrow Payouts",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=Config.RELAY_MISFIRE_GRACE_SECONDS,
            next_run_time=datetime.now(timezone.utc),  # First cycle immediately
            replace_existing=True
        )
        logger.info(f"✅ Atomic Swap Relay scheduled every {self.interval_seconds} seconds")

    def start(self):
        """Start the scheduler; must be called from a running event loop"""
        self.setup_jobs()
        self.scheduler.start()

        for job in self.scheduler.get_jobs():
            logger.info(f"📋 Active job: {job.name} ({job.id}), next run {job.next_run_time}")

    def stop(self):
        """Stop the scheduler without waiting for a running cycle"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("📴 Swap relay scheduler stopped")

    @property
    def running(self) -> bool:
        return self.scheduler.running


__all__ = ["SwapRelayScheduler", "RELAY_JOB_ID"]
