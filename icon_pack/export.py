"""
Module: icon_pack.export
Purpose: User-initiated follow-up actions on finished provider jobs
Dependencies: httpx (through IconPackClient)

Both actions are local to a single job: a failure raises and leaves the
session as it was.
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

from icon_pack import providers
from icon_pack.client import IconPackClient
from icon_pack.config import Config, get_config
from icon_pack.errors import ExportError, GenerateMoreError
from icon_pack.progress import ProgressEstimator
from icon_pack.render import SessionListener
from icon_pack.schemas import ExportRequest, MoreIconsRequest
from icon_pack.session import GenerationSession, Icon, JobKey, JobStatus, ProviderJob
from icon_pack.utils.output_manager import OutputManager

logger = logging.getLogger(__name__)

MORE_ICON_COUNT = 9


def filename_for(request_id: str, key: JobKey) -> str:
    """Archive name for an exported job, e.g. ``icon-pack-abc-flux-gen1.zip``."""
    return f"icon-pack-{OutputManager.safe_name(request_id)}-{key.provider}-gen{key.generation_index}.zip"


def pad_descriptions(descriptions: Sequence[str], count: int = MORE_ICON_COUNT) -> List[str]:
    """
    Normalize generate-more descriptions to exactly ``count`` entries.

    Raises:
        GenerateMoreError: If more than ``count`` descriptions are given
    """
    cleaned = [(desc or "").strip() for desc in descriptions]
    if len(cleaned) > count:
        raise GenerateMoreError(f"At most {count} icon descriptions are allowed, got {len(cleaned)}")
    return cleaned + [""] * (count - len(cleaned))


class ExportRequester:
    """
    Export and generate-more for a session's finished jobs.

    Attributes:
        client: Backend client
        config: Configuration instance
        listener: Notified of new icons and transient notices
        output_dir: Base directory archives are written under
    """

    def __init__(
        self,
        client: IconPackClient,
        config: Optional[Config] = None,
        listener: Optional[SessionListener] = None,
        output_dir: Optional[Union[str, Path]] = None,
    ):
        self.client = client
        self.config = config or get_config()
        self.listener = listener or SessionListener()
        self.output_dir = Path(output_dir or self.config.output["directory"])

    async def export(
        self,
        session: GenerationSession,
        key: JobKey,
        remove_background: bool = False,
    ) -> Path:
        """
        Download the archive for one successful job and save it.

        Args:
            session: Session the job belongs to
            key: Job to export
            remove_background: Ask the backend to strip icon backgrounds

        Returns:
            Path of the saved archive

        Raises:
            ExportError: If the job is unknown or unfinished, or the download
                fails. Nothing is sent for an unknown or unfinished job.
        """
        job = session.get_job(key)
        if job is None:
            raise self._rejected(ExportError(f"No job {key} in request {session.request_id}"))
        if job.status is not JobStatus.SUCCESS:
            raise self._rejected(
                ExportError(f"Job {key} has no results to export (status: {job.status.value})")
            )

        request = ExportRequest(
            request_id=session.request_id,
            service_name=key.provider,
            generation_index=key.generation_index,
            remove_background=remove_background,
        )
        logger.info(f"Exporting {key} of {session.request_id} (remove_background={remove_background})")

        try:
            data = await self.client.export(request)
        except ExportError as exc:
            logger.error(f"Export of {key} failed: {exc}")
            self.listener.on_notice("Failed to export icons. Please try again.", error=True)
            raise

        return self.save_archive(session.request_id, key, data)

    def save_archive(self, request_id: str, key: JobKey, data: bytes) -> Path:
        """Write archive bytes under ``<output>/<request id>/exports/``."""
        output = OutputManager(base_dir=self.output_dir, session_name=request_id)
        try:
            path = output.write_archive(filename_for(request_id, key), data)
        except OSError as exc:
            raise self._rejected(ExportError(f"Could not save archive: {exc}")) from exc
        self.listener.on_notice(f"Icon pack saved to {path}")
        return path

    def _rejected(self, exc: Exception) -> Exception:
        """Report a local failure to the listener and hand the error back to raise."""
        logger.warning(str(exc))
        self.listener.on_notice(str(exc), error=True)
        return exc

    def find_source_job(
        self,
        session: GenerationSession,
        provider_id: str,
        generation_index: Optional[int] = None,
    ) -> Optional[ProviderJob]:
        """
        Job whose grid image seeds generate-more for a provider.

        Prefers the requested generation, otherwise the most recent successful
        one that carries a grid image.
        """
        candidates = [
            job for job in session.ordered_jobs()
            if job.provider == provider_id
            and job.status is JobStatus.SUCCESS
            and job.original_grid_image_base64
        ]
        if generation_index is not None:
            candidates = [job for job in candidates if job.generation_index == generation_index]
        if not candidates:
            return None
        return max(candidates, key=lambda job: job.generation_index)

    async def generate_more(
        self,
        session: GenerationSession,
        provider_id: str,
        descriptions: Sequence[str] = (),
        generation_index: Optional[int] = None,
        seed: Optional[int] = None,
    ) -> List[Icon]:
        """
        Generate another grid in the style of a provider's earlier result.

        New icons are appended to ``session.more_icons`` and to the
        aggregated export pool; nothing is replaced.

        Args:
            session: Session holding the original grid
            provider_id: Provider to ask
            descriptions: Up to nine per-icon descriptions
            generation_index: Grid to use as the style reference (default: latest)
            seed: Seed for the provider (default: the source grid's seed)

        Returns:
            The new icons

        Raises:
            GenerateMoreError: If no grid image is available (no request is
                sent), or the backend reports or returns an error
        """
        if not providers.is_known(provider_id):
            raise self._rejected(GenerateMoreError(f"Unknown provider '{provider_id}'"))

        source = self.find_source_job(session, provider_id, generation_index)
        if source is None:
            raise self._rejected(GenerateMoreError(
                f"No original image found for {providers.display_name(provider_id)}"
            ))

        icon_count = self.config.generation.get("more_icon_count", MORE_ICON_COUNT)
        try:
            padded = pad_descriptions(descriptions, icon_count)
        except GenerateMoreError as exc:
            raise self._rejected(exc)

        general_description = getattr(session.request, "general_description", None)
        request = MoreIconsRequest(
            original_request_id=session.request_id,
            service_name=provider_id,
            original_image_base64=source.original_grid_image_base64,
            general_description=general_description,
            icon_descriptions=padded,
            icon_count=icon_count,
            seed=seed if seed is not None else source.seed,
        )

        progress = self.config.progress
        ramp_key = f"{provider_id}-more"
        estimator = ProgressEstimator(
            on_tick=lambda key, percent: self.listener.on_progress(session, key, percent),
            tick_seconds=progress["tick_seconds"],
            ceiling=progress["ceiling"],
        )
        estimator.start(ramp_key, progress["more_duration"])
        logger.info(f"Generating more icons from {source.key} of {session.request_id}")

        try:
            response = await self.client.generate_more(request)
        except GenerateMoreError as exc:
            logger.error(f"Generate-more for {provider_id} failed: {exc}")
            self.listener.on_notice("Failed to generate more icons. Please try again.", error=True)
            raise
        finally:
            estimator.stop_all()

        if response.status != "success":
            message = response.message or "Failed to generate more icons"
            self.listener.on_notice(message, error=True)
            raise GenerateMoreError(message)

        icons = [payload.to_icon() for payload in response.new_icons]
        session.more_icons.setdefault(provider_id, []).extend(icons)
        if session.result is not None:
            session.result.icons.extend(icons)

        logger.info(f"Added {len(icons)} more icons for {provider_id}")
        self.listener.on_more_icons(session, provider_id, icons)
        return icons
