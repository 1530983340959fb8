"""
Module: icon_pack.session
Purpose: In-memory state for one generation session and its provider jobs

A ``GenerationSession`` is created from the submit response and owned by a
single controller. The tracker, estimator and aggregator all receive it
explicitly; nothing here is global.
"""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from icon_pack import providers
from icon_pack.errors import ProviderJobError

_JOB_KEY_RE = re.compile(r"^(?P<provider>[A-Za-z0-9_]+)-gen(?P<index>\d+)$")


class JobStatus(str, Enum):
    """Lifecycle of a provider job. ``success`` and ``error`` are terminal."""
    PENDING = "pending"
    STARTED = "started"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCESS, JobStatus.ERROR)


class SessionState(str, Enum):
    """What the front end is showing for the session."""
    INITIAL = "initial"
    STREAMING = "streaming"
    RESULTS = "results"
    ERROR = "error"


class JobKey(NamedTuple):
    """Provider id plus 1-based generation index."""
    provider: str
    generation_index: int

    def __str__(self) -> str:
        return f"{self.provider}-gen{self.generation_index}"

    @classmethod
    def parse(cls, service_name: str, generation_index: Optional[int] = None) -> "JobKey":
        """
        Build a key from the wire ``serviceName`` and ``generationIndex``.

        The backend sends either ``"flux-gen2"`` or a bare ``"flux"`` with the
        index in its own field. A missing or zero index means generation 1.

        Args:
            service_name: ``serviceName`` from the event payload
            generation_index: ``generationIndex`` from the payload, if any

        Returns:
            The parsed JobKey
        """
        match = _JOB_KEY_RE.match(service_name)
        if match:
            return cls(match.group("provider"), int(match.group("index")))
        return cls(service_name, generation_index or 1)


@dataclass
class Icon:
    """One generated icon."""
    image_data: bytes
    description: Optional[str] = None

    @classmethod
    def from_base64(cls, data: str, description: Optional[str] = None) -> "Icon":
        return cls(image_data=base64.b64decode(data, validate=True), description=description)

    def to_base64(self) -> str:
        return base64.b64encode(self.image_data).decode("ascii")


@dataclass
class ProviderJob:
    """
    Accumulated state of one (provider, generation) unit of work.

    ``icons`` is only filled on success and ``progress_percent`` is pinned to
    100 once the job reaches a terminal status.
    """
    key: JobKey
    status: JobStatus = JobStatus.PENDING
    message: Optional[str] = None
    icons: List[Icon] = field(default_factory=list)
    original_grid_image_base64: Optional[str] = None
    generation_time_ms: Optional[int] = None
    seed: Optional[int] = None
    progress_percent: float = 0.0
    error: Optional[ProviderJobError] = None

    @property
    def provider(self) -> str:
        return self.key.provider

    @property
    def generation_index(self) -> int:
        return self.key.generation_index

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def display_name(self) -> str:
        return providers.display_name(self.provider)


@dataclass
class AggregatedResult:
    """
    Final view of a session, built once when the stream completes.

    Attributes:
        request_id: Server request identifier
        icons: Every successful job's icons in job order. This is the export
            candidate pool; generate-more appends to it.
        by_provider: Successful jobs grouped under each known provider id
        message: Completion message from the server, if any
        trial_mode: Whether the server marked the results as trial output
    """
    request_id: str
    icons: List[Icon] = field(default_factory=list)
    by_provider: Dict[str, List[ProviderJob]] = field(default_factory=dict)
    message: Optional[str] = None
    trial_mode: bool = False

    def latest_job(self, provider_id: str) -> Optional[ProviderJob]:
        """Most recent (highest generation index) successful job for a provider."""
        jobs = self.by_provider.get(provider_id) or []
        if not jobs:
            return None
        return max(jobs, key=lambda job: job.generation_index)

    def latest_grid(self, provider_id: str) -> Optional[str]:
        job = self.latest_job(provider_id)
        return job.original_grid_image_base64 if job else None


@dataclass
class GenerationSession:
    """
    One submitted generation request and everything learned about it.

    Attributes:
        request_id: Server request identifier
        enabled_providers: Providers running in this session, registry order
        request: The submitted request (a ``GenerationRequest``)
        jobs: Provider jobs keyed by JobKey, in display order
        estimate_seconds: Progress ramp duration for this request size
        state: Current display state
        error_message: Session level error text when ``state`` is ERROR
        result: Aggregated result once the stream completed
        more_icons: Icons from generate-more, per provider
    """
    request_id: str
    enabled_providers: Tuple[str, ...]
    request: Any = None
    jobs: Dict[JobKey, ProviderJob] = field(default_factory=dict)
    estimate_seconds: float = 40.0
    state: SessionState = SessionState.INITIAL
    error_message: Optional[str] = None
    result: Optional[AggregatedResult] = None
    more_icons: Dict[str, List[Icon]] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        request_id: str,
        enabled_providers: Iterable[str],
        generations_per_service: int = 1,
        request: Any = None,
        estimate_seconds: float = 40.0,
    ) -> "GenerationSession":
        """
        Create a session with one pending job per provider and generation.

        Args:
            request_id: Server request identifier
            enabled_providers: Provider ids, already in display order
            generations_per_service: Grids requested per provider
            request: The submitted request
            estimate_seconds: Progress ramp duration

        Returns:
            New GenerationSession
        """
        enabled = tuple(enabled_providers)
        jobs: Dict[JobKey, ProviderJob] = {}
        for provider_id in enabled:
            for index in range(1, generations_per_service + 1):
                key = JobKey(provider_id, index)
                jobs[key] = ProviderJob(key=key)
        return cls(
            request_id=request_id,
            enabled_providers=enabled,
            request=request,
            jobs=jobs,
            estimate_seconds=estimate_seconds,
        )

    def get_job(self, key: JobKey) -> Optional[ProviderJob]:
        return self.jobs.get(key)

    def ordered_jobs(self) -> List[ProviderJob]:
        return list(self.jobs.values())

    @property
    def is_finished(self) -> bool:
        return self.state in (SessionState.RESULTS, SessionState.ERROR)
