"""Job orchestration and log-derived progress."""
from replicate_jobs.jobs.progress import ProgressReading, parse_progress
from replicate_jobs.jobs import orchestrator

__all__ = [
    "ProgressReading",
    "parse_progress",
    "orchestrator",
]
