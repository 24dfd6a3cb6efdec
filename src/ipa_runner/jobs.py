"""Scheduled-job records.

Jobs describe a task file to run on a cron schedule. This module only
stores the records; nothing here schedules or runs them.
"""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from .exceptions import ConfigError
from .types import TaskType

logger = logging.getLogger(__name__)

CRON_FIELDS = 5


def validate_cron(expr: str) -> str:
    """Check that ``expr`` has five whitespace-separated fields.

    Returns:
        The expression with whitespace normalised

    Raises:
        ConfigError: If the field count is wrong
    """
    parts = expr.split()
    if len(parts) != CRON_FIELDS:
        raise ConfigError(
            f"cron expression must have {CRON_FIELDS} fields, got {len(parts)}: {expr!r}",
            cron_expr=expr,
        )
    return " ".join(parts)


@dataclass
class ScheduledJob:
    """A stored job definition.

    Attributes:
        id: Store-assigned identifier
        name: Display name
        enabled: Whether the job is active
        file_path: Task file to run
        job_type: Kind of task file
        cron_expr: Five-field cron schedule
    """

    id: int
    name: str
    file_path: str
    job_type: TaskType
    cron_expr: str
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["job_type"] = self.job_type.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScheduledJob":
        """Create from dictionary."""
        return cls(
            id=int(data["id"]),
            name=data["name"],
            file_path=data["file_path"],
            job_type=TaskType.parse(data["job_type"]),
            cron_expr=data["cron_expr"],
            enabled=bool(data.get("enabled", True)),
        )

    def format_text(self) -> str:
        state = "enabled" if self.enabled else "disabled"
        return f"{self.id:>4}  {self.name}  [{self.job_type.value}] {self.file_path}  '{self.cron_expr}'  {state}"


class JobStore:
    """JSON file holding every scheduled job.

    Example:
        >>> store = JobStore(Path("/tmp/jobs.json"))
        >>> job = store.add("nightly patch", "bash", "/opt/patch.sh", "0 2 * * *")
        >>> store.get(job.id).enabled
        True
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> list[ScheduledJob]:
        if not self.path.exists():
            return []
        try:
            with self.path.open() as f:
                data = json.load(f)
            return [ScheduledJob.from_dict(item) for item in data.get("jobs", [])]
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            raise ConfigError(f"failed to read job store {self.path}: {e}", path=str(self.path)) from e

    def _save(self, jobs: list[ScheduledJob]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w") as f:
            json.dump({"jobs": [job.to_dict() for job in jobs]}, f, indent=2)

    def add(
        self,
        name: str,
        job_type: TaskType | str,
        file_path: str,
        cron_expr: str,
        enabled: bool = True,
    ) -> ScheduledJob:
        """Store a new job and return it with its assigned id.

        Raises:
            ConfigError: If the cron expression is malformed
            DispatchError: If the job type is unknown
        """
        if not isinstance(job_type, TaskType):
            job_type = TaskType.parse(job_type)
        jobs = self._load()
        job = ScheduledJob(
            id=max((j.id for j in jobs), default=0) + 1,
            name=name,
            file_path=file_path,
            job_type=job_type,
            cron_expr=validate_cron(cron_expr),
            enabled=enabled,
        )
        jobs.append(job)
        self._save(jobs)
        logger.info(f"Job {job.id} added: {name}")
        return job

    def get(self, job_id: int) -> ScheduledJob | None:
        for job in self._load():
            if job.id == job_id:
                return job
        return None

    def list(self) -> list[ScheduledJob]:
        return sorted(self._load(), key=lambda j: j.id)

    def remove(self, job_id: int) -> bool:
        """Delete a job.

        Returns:
            True if deleted, False if not found
        """
        jobs = self._load()
        kept = [j for j in jobs if j.id != job_id]
        if len(kept) == len(jobs):
            return False
        self._save(kept)
        logger.info(f"Job {job_id} removed")
        return True

    def set_enabled(self, job_id: int, enabled: bool) -> ScheduledJob | None:
        """Enable or disable a job; returns None if it does not exist."""
        jobs = self._load()
        for job in jobs:
            if job.id == job_id:
                job.enabled = enabled
                self._save(jobs)
                return job
        return None
