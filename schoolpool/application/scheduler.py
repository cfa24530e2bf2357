"""
Background jobs. One interval job sweeps expired proposals; an optional one keeps geodata warm.
"""

from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from schoolpool.application.schedule_coordinator import ScheduleConflictResolver
from schoolpool.core.safety_engine.geo_risk_cache import GeoRiskCache
from schoolpool.utils.logger import logger

PROPOSAL_SWEEP_JOB_ID = "proposal_expiry_sweep"
GEO_REFRESH_JOB_ID = "geo_risk_refresh"


class JobScheduler:
    def __init__(self, scheduler: Optional[BackgroundScheduler] = None):
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")

    def add_proposal_sweep(self, resolver: ScheduleConflictResolver, interval_s: float) -> None:
        def sweep():
            try:
                resolver.sweep_expired()
            except Exception:
                logger.exception("Proposal expiry sweep failed")

        self.scheduler.add_job(
            sweep,
            IntervalTrigger(seconds=interval_s),
            id=PROPOSAL_SWEEP_JOB_ID,
            name="Proposal expiry sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def add_geo_refresh(self, cache: GeoRiskCache, interval_min: float) -> None:
        self.scheduler.add_job(
            cache.snapshot,
            IntervalTrigger(minutes=interval_min),
            id=GEO_REFRESH_JOB_ID,
            name="Geo risk data refresh",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def start(self) -> None:
        if self.scheduler.running:
            return
        self.scheduler.start()
        logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} jobs")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped.")

    def status(self) -> dict:
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": str(job.next_run_time) if getattr(job, "next_run_time", None) else None,
                "trigger": str(job.trigger),
            })
        return {
            "running": self.scheduler.running,
            "jobs": jobs,
            "job_count": len(jobs),
        }
