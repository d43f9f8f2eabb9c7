"""Scheduled publishing for Folio."""

from .scheduler import SCHEDULED, ScheduleEntry, Scheduler

__all__ = ["SCHEDULED", "ScheduleEntry", "Scheduler"]
