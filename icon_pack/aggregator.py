"""
Module: icon_pack.aggregator
Purpose: Build the final per-session result once the stream completes
"""

import logging
from typing import Dict, List, Optional

from icon_pack import providers
from icon_pack.session import AggregatedResult, GenerationSession, Icon, JobStatus, ProviderJob

logger = logging.getLogger(__name__)


def aggregate(
    session: GenerationSession,
    message: Optional[str] = None,
    trial_mode: bool = False,
) -> AggregatedResult:
    """
    Merge every successful job of a session.

    Walks the jobs in display order, concatenating icons into one flat
    sequence and bucketing jobs under their provider. Jobs that never
    succeeded contribute nothing. Providers outside the registry are dropped.

    Args:
        session: Session whose stream just completed
        message: Completion message from the server
        trial_mode: Whether the server flagged trial output

    Returns:
        AggregatedResult for the session
    """
    icons: List[Icon] = []
    by_provider: Dict[str, List[ProviderJob]] = {
        provider_id: [] for provider_id in providers.provider_ids()
    }

    for job in session.ordered_jobs():
        if job.status is not JobStatus.SUCCESS:
            continue
        icons.extend(job.icons)
        bucket = by_provider.get(job.provider)
        if bucket is None:
            logger.warning(f"Dropping result for unknown provider '{job.provider}'")
            continue
        bucket.append(job)

    logger.info(
        f"Aggregated {len(icons)} icons from "
        f"{sum(len(jobs) for jobs in by_provider.values())} successful jobs"
    )
    return AggregatedResult(
        request_id=session.request_id,
        icons=icons,
        by_provider=by_provider,
        message=message,
        trial_mode=trial_mode,
    )
