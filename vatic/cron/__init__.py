"""Cron scheduling for jobs with an interval."""

from vatic.cron.scheduler import CronScheduler, compute_next_run

__all__ = ["CronScheduler", "compute_next_run"]
