"""
Module: icon_pack.tracker
Purpose: Apply ``service_update`` events to a session's provider jobs

Transitions are ``pending -> started -> (success | error)``. Terminal jobs
never change again. Every terminal transition goes through ``_finish`` so the
job's progress ramp is stopped in the same step that marks it terminal.
"""

import logging
from typing import Optional

from icon_pack.errors import ProviderJobError
from icon_pack.progress import ProgressEstimator
from icon_pack.schemas import ServiceUpdate
from icon_pack.session import GenerationSession, JobKey, JobStatus, ProviderJob

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Generation failed"

# Statuses the backend sends while a job is still running
IN_PROGRESS_STATUSES = ("started", "upscaling")


def apply_update(
    session: GenerationSession,
    update: ServiceUpdate,
    estimator: ProgressEstimator,
) -> Optional[ProviderJob]:
    """
    Apply one service update to the session.

    Args:
        session: Session owning the jobs
        update: Parsed ``service_update`` payload
        estimator: Progress ramps for the session

    Returns:
        The job that changed, or None if the update was ignored
    """
    key = JobKey.parse(update.service_name, update.generation_index)
    job = session.get_job(key)
    if job is None:
        logger.warning(f"Ignoring update for unknown job {key} (status={update.status})")
        return None

    if job.is_terminal:
        logger.debug(f"Ignoring '{update.status}' for {key}: already {job.status.value}")
        return None

    if update.status in IN_PROGRESS_STATUSES:
        job.status = JobStatus.STARTED
        if update.message:
            job.message = update.message
        estimator.ensure(key, session.estimate_seconds, initial=job.progress_percent)
        return job

    if update.status == "success":
        icons = [payload.to_icon() for payload in update.icons]
        _finish(
            job,
            JobStatus.SUCCESS,
            estimator,
            message=update.message,
            generation_time_ms=update.generation_time_ms,
        )
        job.icons = icons
        job.original_grid_image_base64 = update.original_grid_image_base64
        job.seed = update.seed
        logger.info(f"{key} finished with {len(icons)} icons")
        return job

    message = update.message or DEFAULT_ERROR_MESSAGE
    _finish(
        job,
        JobStatus.ERROR,
        estimator,
        message=message,
        generation_time_ms=update.generation_time_ms,
    )
    job.error = ProviderJobError(str(key), message)
    logger.info(f"{key} failed: {message}")
    return job


def apply_progress(session: GenerationSession, key: JobKey, percent: float) -> Optional[ProviderJob]:
    """
    Record a progress estimate for a running job.

    Estimates never lower a job's progress and never touch a terminal job.
    """
    job = session.get_job(key)
    if job is None or job.is_terminal:
        return None
    if percent <= job.progress_percent:
        return None
    job.progress_percent = min(100.0, percent)
    return job


def _finish(
    job: ProviderJob,
    status: JobStatus,
    estimator: ProgressEstimator,
    message: Optional[str],
    generation_time_ms: Optional[int],
) -> None:
    estimator.stop(job.key)
    job.status = status
    job.progress_percent = 100.0
    if message:
        job.message = message
    if generation_time_ms is not None:
        job.generation_time_ms = generation_time_ms
