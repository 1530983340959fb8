"""
icon-pack - Client for multi-provider AI icon pack generation

Submits an icon pack request to the generation backend, follows the push-event
stream as each provider (Flux-Pro, Recraft V3, Luma Photon, GPT Image, Imagen)
starts and finishes, estimates progress while they run, and merges the results
for export or for generating more icons in the same style.

Main Components:
    - GenerationSessionController: Submit, stream and finish one session
    - ProgressEstimator: Cosmetic per-job progress ramps
    - ExportRequester: Archive export and generate-more
    - IconPackClient: HTTP client for the backend

Example:
    >>> import asyncio
    >>> from icon_pack import GenerationSessionController, IconPackClient
    >>> from icon_pack.schemas import GenerationRequest
    >>> async def main():
    ...     async with IconPackClient() as client:
    ...         controller = GenerationSessionController(client)
    ...         request = GenerationRequest(general_description="pastel weather icons")
    ...         return await controller.generate(request)
    >>> result = asyncio.run(main())
"""

__version__ = "0.1.0"

from icon_pack.client import IconPackClient
from icon_pack.controller import GenerationSessionController
from icon_pack.export import ExportRequester
from icon_pack.progress import ProgressEstimator

__all__ = [
    "GenerationSessionController",
    "ExportRequester",
    "IconPackClient",
    "ProgressEstimator",
]
