"""
Module: icon_pack.cli
Purpose: Command-line interface for icon pack generation
Dependencies: click, pathlib

Submit a generation request, watch providers stream their results, then
export archives or ask for more icons without writing any Python.
"""

import asyncio
import base64
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from pydantic import ValidationError

from icon_pack import __version__, providers
from icon_pack.client import IconPackClient
from icon_pack.config import get_config, load_config
from icon_pack.controller import GenerationSessionController
from icon_pack.errors import (
    GenerationFailedError,
    IconPackError,
    StreamTransportError,
    SubmissionError,
)
from icon_pack.export import ExportRequester
from icon_pack.render import ConsoleRenderer
from icon_pack.schemas import ExportRequest, GenerationRequest
from icon_pack.session import JobKey

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    config = get_config()
    level = logging.DEBUG if verbose else getattr(logging, str(config.logging["level"]).upper(), logging.WARNING)
    logging.basicConfig(level=level, format=config.logging["format"])


def _client(ctx: click.Context) -> IconPackClient:
    return IconPackClient(base_url=ctx.obj.get("base_url"), config=get_config())


@click.group()
@click.version_option(version=__version__, prog_name="icon-pack")
@click.option(
    "--config", "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML file with configuration overrides"
)
@click.option(
    "--base-url",
    default=None,
    help="Backend URL (default: from config, http://localhost:8080)"
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Enable debug logging"
)
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[Path], base_url: Optional[str], verbose: bool):
    """
    icon-pack - Generate icon packs from several AI providers at once.

    Examples:

    \b
      # Generate nine icons from every enabled provider
      icon-pack generate "flat pastel weather icons"

    \b
      # Two grids per provider, then export Flux's first grid
      icon-pack generate "line art kitchen tools" --generations 2 --export flux

    \b
      # Run against the simulated backend
      icon-pack serve-mock --port 8080
    """
    ctx.ensure_object(dict)
    if config_file is not None:
        load_config(config_file)
    ctx.obj["base_url"] = base_url
    _setup_logging(verbose)


@cli.command()
@click.argument("theme", required=False)
@click.option(
    "--icon-count", "-n",
    type=click.IntRange(min=1),
    default=None,
    help="Icons per grid (default: 9)"
)
@click.option(
    "--generations", "-g",
    type=click.IntRange(1, 2),
    default=None,
    help="Grids per provider (default: 1, max: 2)"
)
@click.option(
    "--description", "-d",
    "descriptions",
    multiple=True,
    help="Description of one icon (repeatable)"
)
@click.option(
    "--reference-image", "-r",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Image whose style the icons should follow"
)
@click.option(
    "--seed",
    type=int,
    default=None,
    help="Base seed for reproducible grids (default: chosen by the server)"
)
@click.option(
    "--output", "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Output directory (default: outputs/)"
)
@click.option(
    "--no-save",
    is_flag=True,
    help="Don't write icons to disk"
)
@click.option(
    "--export", "export_providers",
    multiple=True,
    help="Export the latest successful grid of this provider when done (repeatable)"
)
@click.option(
    "--remove-background",
    is_flag=True,
    help="Ask for transparent backgrounds in exported archives"
)
@click.option(
    "--more",
    "more_provider",
    default=None,
    help="Generate nine more icons from this provider when done"
)
@click.option(
    "--hint",
    "hints",
    multiple=True,
    help="Description for one of the extra icons (repeatable, max 9)"
)
@click.pass_context
def generate(
    ctx: click.Context,
    theme: Optional[str],
    icon_count: Optional[int],
    generations: Optional[int],
    descriptions: Tuple[str, ...],
    reference_image: Optional[Path],
    seed: Optional[int],
    output: Optional[Path],
    no_save: bool,
    export_providers: Tuple[str, ...],
    remove_background: bool,
    more_provider: Optional[str],
    hints: Tuple[str, ...]
):
    """
    Generate an icon pack and stream each provider's progress.

    THEME: General description of the icon set

    \b
    Examples:
      icon-pack generate "flat pastel weather icons"
      icon-pack generate "office supplies" -d stapler -d "paper clip" -g 2
      icon-pack generate -r logo.png --export flux --remove-background
      icon-pack generate "garden tools" --more recraft --hint rake --hint hoe
    """
    config = get_config()

    for provider_id in export_providers + ((more_provider,) if more_provider else ()):
        if not providers.is_known(provider_id):
            click.echo(f"✗ Error: unknown provider '{provider_id}' "
                       f"(choose from {', '.join(providers.provider_ids())})", err=True)
            sys.exit(1)

    try:
        request = GenerationRequest(
            icon_count=icon_count or config.generation["icon_count"],
            generations_per_service=generations or config.generation["generations_per_service"],
            individual_descriptions=list(descriptions),
            general_description=theme,
            reference_image_base64=(
                base64.b64encode(reference_image.read_bytes()).decode("ascii")
                if reference_image else None
            ),
            seed=seed,
        )
    except ValidationError as e:
        click.echo(f"✗ Error: {e.errors()[0]['msg']}", err=True)
        sys.exit(1)

    output_dir = output or Path(config.output["directory"])
    save_icons = config.output["save_icons"] and not no_save
    renderer = ConsoleRenderer(
        output_dir=str(output_dir) if save_icons else None,
        image_format=config.output["image_format"],
    )

    async def run() -> None:
        async with _client(ctx) as client:
            controller = GenerationSessionController(client, config=config, listener=renderer)
            try:
                await controller.generate(request)
                session = controller.session
                requester = ExportRequester(client, config=config, listener=renderer, output_dir=output_dir)

                for provider_id in export_providers:
                    job = session.result.latest_job(provider_id)
                    if job is None:
                        click.echo(f"✗ Nothing to export for {providers.display_name(provider_id)}", err=True)
                        continue
                    await requester.export(session, job.key, remove_background=remove_background)

                if more_provider:
                    await requester.generate_more(session, more_provider, hints)
            finally:
                await controller.close()

    try:
        asyncio.run(run())
    except (SubmissionError, GenerationFailedError, StreamTransportError):
        # Already reported by the renderer
        sys.exit(1)
    except (IconPackError, OSError) as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("request_id")
@click.argument("provider")
@click.option(
    "--generation", "-g",
    type=click.IntRange(min=1),
    default=1,
    help="Generation index to export (default: 1)"
)
@click.option(
    "--remove-background",
    is_flag=True,
    help="Ask for transparent backgrounds"
)
@click.option(
    "--output", "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Output directory (default: outputs/)"
)
@click.pass_context
def export(
    ctx: click.Context,
    request_id: str,
    provider: str,
    generation: int,
    remove_background: bool,
    output: Optional[Path]
):
    """
    Download the archive of an earlier generation.

    REQUEST_ID: Request id printed by the generate command
    PROVIDER: Provider id (flux, recraft, photon, gpt, imagen)

    \b
    Examples:
      icon-pack export 3f9a2c flux
      icon-pack export 3f9a2c recraft --generation 2 --remove-background
    """
    if not providers.is_known(provider):
        click.echo(f"✗ Error: unknown provider '{provider}'", err=True)
        sys.exit(1)

    config = get_config()
    key = JobKey(provider, generation)

    async def run() -> Path:
        async with _client(ctx) as client:
            requester = ExportRequester(client, config=config, output_dir=output)
            data = await client.export(ExportRequest(
                request_id=request_id,
                service_name=provider,
                generation_index=generation,
                remove_background=remove_background,
            ))
            return requester.save_archive(request_id, key, data)

    try:
        click.echo(f"📦 Exporting {providers.display_name(provider)} #{generation} of {request_id}")
        path = asyncio.run(run())
        click.echo(f"✓ Saved to: {path}")
    except IconPackError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("request_id")
@click.pass_context
def status(ctx: click.Context, request_id: str):
    """
    Look up the server-side status of a request.

    Useful after a dropped connection; nothing is resumed automatically.
    """
    async def run():
        async with _client(ctx) as client:
            return await client.get_status(request_id)

    try:
        result = asyncio.run(run())
        click.echo(f"Request {request_id}: {result.status}")
        if result.message:
            click.echo(f"  {result.message}")
        if result.status == "not_found":
            sys.exit(1)
    except IconPackError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("token")
@click.pass_context
def unsubscribe(ctx: click.Context, token: str):
    """
    Stop notification emails.

    TOKEN: Token from the unsubscribe link in an email
    """
    async def run():
        async with _client(ctx) as client:
            return await client.unsubscribe(token)

    try:
        result = asyncio.run(run())
        if result.success:
            click.echo(f"✓ {result.message or 'Unsubscribed'}")
        else:
            click.echo(f"✗ {result.message or 'Unsubscribe failed'}", err=True)
            sys.exit(1)
    except IconPackError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("text")
@click.pass_context
def feedback(ctx: click.Context, text: str):
    """
    Send feedback to the team.

    TEXT: Your feedback
    """
    async def run():
        async with _client(ctx) as client:
            await client.submit_feedback(text)

    try:
        asyncio.run(run())
        click.echo("✓ Thanks for your feedback!")
    except IconPackError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.pass_context
def info(ctx: click.Context):
    """
    Display configuration and the provider registry.
    """
    config = get_config()
    click.echo("=== icon-pack Info ===\n")
    click.echo(f"Backend: {ctx.obj.get('base_url') or config.api['base_url']}")
    click.echo(f"Output directory: {config.output['directory']}")

    click.echo("\n--- Providers ---")
    for provider in providers.PROVIDERS:
        click.echo(f"  {provider.id:<8} {provider.display_name}")

    progress = config.progress
    click.echo("\n--- Progress estimate ---")
    click.echo(f"Small batch: {progress['short_duration']:.0f}s")
    click.echo(f"Large batch / reference image: {progress['long_duration']:.0f}s")
    click.echo(f"Generate more: {progress['more_duration']:.0f}s")


@cli.command("serve-mock")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", type=int, default=8080, help="Port to listen on")
@click.option(
    "--delay",
    type=float,
    default=0.5,
    help="Seconds between push events (default: 0.5)"
)
@click.option(
    "--fail", "failing",
    multiple=True,
    help="Provider whose jobs should fail (repeatable)"
)
def serve_mock(host: str, port: int, delay: float, failing: Tuple[str, ...]):
    """
    Run a simulated backend for local testing.

    \b
    Examples:
      icon-pack serve-mock
      icon-pack serve-mock --port 9000 --fail gpt
    """
    from icon_pack.mock_server import run_server

    click.echo(f"🧪 Mock backend on http://{host}:{port}")
    run_server(host=host, port=port, delay=delay, failing_services=failing)


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
