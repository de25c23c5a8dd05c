"""Routing of inbound messages to jobs."""

from vatic.routing.trigger import match_jobs, match_trigger, strip_trigger

__all__ = ["match_jobs", "match_trigger", "strip_trigger"]
