"""
Module: icon_pack.client
Purpose: Async HTTP client for the icon generation backend
Dependencies: httpx, pydantic

Every call maps transport and status failures onto the error taxonomy in
``icon_pack.errors``; httpx exceptions never leave this module.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
from pydantic import ValidationError

from icon_pack.config import Config, get_config
from icon_pack.errors import (
    ExportError,
    FormSubmissionError,
    GenerateMoreError,
    IconPackError,
    StreamTransportError,
    SubmissionError,
)
from icon_pack.schemas import (
    ExportRequest,
    FeedbackRequest,
    GenerationRequest,
    GenerationStartResponse,
    MoreIconsRequest,
    MoreIconsResponse,
    StatusResponse,
    UnsubscribeResponse,
)
from icon_pack.sse import ServerSentEvent, iter_sse

logger = logging.getLogger(__name__)


class IconPackClient:
    """
    Client for the generation backend's REST and push-event endpoints.

    Use as an async context manager so the underlying connection pool is
    closed:

    Example:
        >>> async with IconPackClient("http://localhost:8080") as client:
        ...     start = await client.start_generation(request)
        ...     async with client.stream_events(start.request_id) as events:
        ...         async for event in events:
        ...             print(event.event, event.data)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        config: Optional[Config] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Backend root URL (default from config)
            config: Configuration instance (default: global config)
            transport: Custom httpx transport, used by tests and the mock server
        """
        self.config = config or get_config()
        api = self.config.api
        self.base_url = base_url or api["base_url"]
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(api["timeout"], connect=api["connect_timeout"]),
            transport=transport,
        )

    async def __aenter__(self) -> "IconPackClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def start_generation(self, request: GenerationRequest) -> GenerationStartResponse:
        """
        Submit a generation request.

        Args:
            request: Generation parameters

        Returns:
            Request id and the providers enabled for it

        Raises:
            SubmissionError: On network failure, non-success status or a
                response body that is not the expected JSON
        """
        try:
            response = await self._http.post("/generate-stream", json=request.to_wire())
        except httpx.HTTPError as exc:
            logger.error(f"Generation request failed: {exc}")
            raise SubmissionError(f"Failed to start generation: {exc}") from exc

        if not response.is_success:
            logger.error(f"Generation request failed: {response.status_code} {response.text[:200]}")
            raise SubmissionError(
                f"Failed to start generation (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        try:
            return GenerationStartResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise SubmissionError(f"Malformed generation response: {exc}") from exc

    @asynccontextmanager
    async def stream_events(self, request_id: str) -> AsyncIterator[AsyncIterator[ServerSentEvent]]:
        """
        Open the push-event stream for a request.

        The connection stays open until the context exits. There is no read
        timeout; the stream ends on a terminal event or a transport error.

        Args:
            request_id: Identifier from ``start_generation``

        Yields:
            Async iterator of decoded events

        Raises:
            StreamTransportError: On connection failure or non-success status
        """
        timeout = httpx.Timeout(None, connect=self.config.api["connect_timeout"])
        try:
            async with self._http.stream(
                "GET",
                f"/stream/{request_id}",
                headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
                timeout=timeout,
            ) as response:
                if not response.is_success:
                    raise StreamTransportError(
                        f"Event stream rejected (HTTP {response.status_code})"
                    )
                logger.info(f"Event stream open for {request_id}")
                yield iter_sse(response.aiter_lines())
        except httpx.HTTPError as exc:
            raise StreamTransportError(f"Event stream failed: {exc}") from exc
        finally:
            logger.info(f"Event stream closed for {request_id}")

    async def export(self, request: ExportRequest) -> bytes:
        """
        Download an icon pack archive.

        Returns:
            Archive bytes, opaque to the client

        Raises:
            ExportError: On network failure or non-success status
        """
        try:
            response = await self._http.post(
                "/export",
                json=request.to_wire(),
                timeout=self.config.api["export_timeout"],
            )
        except httpx.HTTPError as exc:
            raise ExportError(f"Export request failed: {exc}") from exc

        if not response.is_success:
            raise ExportError(f"Export failed (HTTP {response.status_code})")
        return response.content

    async def generate_more(self, request: MoreIconsRequest) -> MoreIconsResponse:
        """
        Ask a provider for another grid in the style of an earlier one.

        Raises:
            GenerateMoreError: On network failure, non-success status or a
                malformed response body
        """
        try:
            response = await self._http.post(
                "/generate-more",
                json=request.to_wire(),
                timeout=self.config.api["more_timeout"],
            )
        except httpx.HTTPError as exc:
            raise GenerateMoreError(f"Generate-more request failed: {exc}") from exc

        if not response.is_success:
            raise GenerateMoreError(f"Generate-more failed (HTTP {response.status_code})")

        try:
            return MoreIconsResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise GenerateMoreError(f"Malformed generate-more response: {exc}") from exc

    async def get_status(self, request_id: str) -> StatusResponse:
        """
        Look up a request's server-side status.

        A 404 is reported as status ``not_found`` rather than an error.
        """
        try:
            response = await self._http.get(f"/status/{request_id}")
        except httpx.HTTPError as exc:
            raise IconPackError(f"Status request failed: {exc}") from exc

        if response.status_code == 404:
            return StatusResponse(status="not_found")
        if not response.is_success:
            raise IconPackError(f"Status request failed (HTTP {response.status_code})")

        try:
            return StatusResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise IconPackError(f"Malformed status response: {exc}") from exc

    async def unsubscribe(self, token: str) -> UnsubscribeResponse:
        """Unsubscribe from notification emails with a token from an email link."""
        try:
            response = await self._http.get("/api/user/unsubscribe", params={"token": token})
            response.raise_for_status()
            return UnsubscribeResponse.model_validate(response.json())
        except httpx.HTTPError as exc:
            raise FormSubmissionError(f"Unsubscribe failed: {exc}") from exc
        except (ValueError, ValidationError) as exc:
            raise FormSubmissionError(f"Malformed unsubscribe response: {exc}") from exc

    async def submit_feedback(self, feedback: str) -> None:
        """Send free-text feedback."""
        try:
            body = FeedbackRequest(feedback=feedback.strip())
        except ValidationError as exc:
            raise FormSubmissionError("Feedback text is empty") from exc

        try:
            response = await self._http.post("/api/feedback", json=body.to_wire())
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FormSubmissionError(f"Feedback submission failed: {exc}") from exc
