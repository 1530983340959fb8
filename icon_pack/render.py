"""
Module: icon_pack.render
Purpose: Session listeners that present progress and results
Dependencies: click

``SessionListener`` is the hook the controller and export requester call
into. ``ConsoleRenderer`` draws to the terminal and optionally writes icons
to disk through an ``OutputManager``.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, Hashable, List, Optional

import click

from icon_pack import providers
from icon_pack.session import AggregatedResult, GenerationSession, Icon, JobStatus, ProviderJob
from icon_pack.utils.output_manager import OutputManager

logger = logging.getLogger(__name__)


class SessionListener:
    """No-op base; override the hooks you need."""

    def on_session_started(self, session: GenerationSession) -> None:
        pass

    def on_job_updated(self, session: GenerationSession, job: ProviderJob) -> None:
        pass

    def on_progress(self, session: GenerationSession, key: Hashable, percent: float) -> None:
        pass

    def on_complete(self, session: GenerationSession, result: AggregatedResult) -> None:
        pass

    def on_error(self, session: Optional[GenerationSession], message: str) -> None:
        pass

    def on_more_icons(self, session: GenerationSession, provider_id: str, icons: List[Icon]) -> None:
        pass

    def on_notice(self, message: str, error: bool = False) -> None:
        """Transient notification (the toast of a web front end)."""
        pass


def format_job_header(job: ProviderJob) -> str:
    """One line summary of a job: status marker, name, timing."""
    if job.status is JobStatus.SUCCESS:
        marker = "✓"
    elif job.status is JobStatus.ERROR:
        marker = "✗"
    else:
        marker = "…"

    timing = ""
    if job.generation_time_ms and job.generation_time_ms > 0:
        timing = f" ({job.generation_time_ms / 1000:.1f}s)"

    return f"{marker} {job.display_name} #{job.generation_index}{timing}"


class ConsoleRenderer(SessionListener):
    """
    Terminal renderer for a generation session.

    Progress is printed in ``progress_step`` increments so a 100 ms tick
    cadence does not flood the terminal.

    Attributes:
        output_dir: Base directory for saved icons, or None to skip saving
        output: OutputManager for the current session
        progress_step: Percent between progress lines
        image_format: Pillow format for saved icons
    """

    def __init__(
        self,
        output_dir: Optional[str] = None,
        progress_step: int = 25,
        image_format: str = "PNG",
    ):
        self.output_dir = output_dir
        self.image_format = image_format
        self.output: Optional[OutputManager] = None
        self.progress_step = progress_step
        self._last_printed: Dict[Hashable, int] = {}

    def on_session_started(self, session: GenerationSession) -> None:
        if self.output_dir is not None:
            self.output = OutputManager(
                base_dir=self.output_dir,
                session_name=session.request_id,
                image_format=self.image_format,
            )

        names = ", ".join(providers.display_name(p) for p in session.enabled_providers)
        click.echo(f"🎨 Request {session.request_id}")
        click.echo(f"   Providers: {names or 'none'}")
        click.echo(f"   Jobs: {len(session.jobs)}")
        self._last_printed.clear()

    def on_progress(self, session: GenerationSession, key: Hashable, percent: float) -> None:
        bucket = int(percent) // self.progress_step * self.progress_step
        if bucket <= self._last_printed.get(key, 0) or bucket >= 100:
            return
        self._last_printed[key] = bucket
        click.echo(f"   {key}: ~{bucket}%")

    def on_job_updated(self, session: GenerationSession, job: ProviderJob) -> None:
        if job.status is JobStatus.STARTED:
            click.echo(f"… {job.display_name} #{job.generation_index} started")
            return

        click.echo(format_job_header(job))
        if job.message:
            click.echo(f"  {job.message}")

        if job.status is JobStatus.SUCCESS:
            for index, icon in enumerate(job.icons, 1):
                click.echo(f"  [{index}] {icon.description or f'Icon {index}'}")
            if self.output is not None and job.icons:
                self._save(lambda: self.output.save_job_icons(job), str(job.key))

    def on_complete(self, session: GenerationSession, result: AggregatedResult) -> None:
        succeeded = sum(len(jobs) for jobs in result.by_provider.values())
        click.echo(f"\n✓ Generation complete: {len(result.icons)} icons from {succeeded} grids")
        if result.trial_mode:
            click.echo("  Trial results: some icons are watermarked or withheld")
        if result.message:
            click.echo(f"  {result.message}")

    def on_error(self, session: Optional[GenerationSession], message: str) -> None:
        click.echo(f"✗ Error: {message}", err=True)

    def on_more_icons(self, session: GenerationSession, provider_id: str, icons: List[Icon]) -> None:
        click.echo(f"✓ {len(icons)} more icons from {providers.display_name(provider_id)}")
        for index, icon in enumerate(icons, 1):
            click.echo(f"  [+{index}] {icon.description or f'Icon {index}'}")
        if self.output is not None and icons:
            self._save(lambda: self.output.save_more_icons(provider_id, icons), f"{provider_id} extras")

    def _save(self, write: Callable[[], List[Path]], label: str) -> None:
        # Save failures never end the session
        try:
            paths = write()
        except OSError as e:
            logger.error(f"Could not save icons for {label}: {e}")
            click.echo(f"✗ Could not save icons for {label}: {e}", err=True)
            return
        click.echo(f"  Saved {len(paths)} icons to {self.output.icons_dir}/")

    def on_notice(self, message: str, error: bool = False) -> None:
        if error:
            click.echo(f"✗ {message}", err=True)
        else:
            click.echo(f"✓ {message}")
