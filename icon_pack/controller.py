"""
Module: icon_pack.controller
Purpose: Drive one generation session from submit to completion
Dependencies: httpx (through IconPackClient)

The controller owns the active ``GenerationSession`` and its progress ramps.
It submits the request, opens a single push-event connection, dispatches each
event through one handler and tears everything down when the session ends or
is replaced.
"""

import asyncio
import logging
from typing import Hashable, Optional

from icon_pack import providers, tracker
from icon_pack.aggregator import aggregate
from icon_pack.client import IconPackClient
from icon_pack.config import Config, get_config
from icon_pack.errors import (
    GenerationFailedError,
    StreamParseError,
    StreamTransportError,
    SubmissionError,
)
from icon_pack.progress import ProgressEstimator
from icon_pack.render import SessionListener
from icon_pack.schemas import (
    GENERATION_COMPLETE,
    GENERATION_ERROR,
    SERVICE_UPDATE,
    GenerationComplete,
    GenerationErrorEvent,
    GenerationRequest,
    ServiceUpdate,
    decode_event,
    is_known_event,
)
from icon_pack.session import AggregatedResult, GenerationSession, JobKey, SessionState
from icon_pack.sse import ServerSentEvent

logger = logging.getLogger(__name__)

CONNECTION_ERROR_MESSAGE = "Connection error. Please try again."
GENERATION_FAILED_MESSAGE = "Generation failed"


class GenerationSessionController:
    """
    Lifecycle of the active generation session.

    Features:
    - Exactly one active session; starting another tears the old one down
    - One push-event connection per session, never retried
    - Malformed events are logged and dropped without ending the session
    - Every progress ramp is cancelled on a terminal update or on teardown

    Attributes:
        client: Backend client
        config: Configuration instance
        listener: Receives state changes for rendering
        session: The active session, if any
        estimator: Progress ramps of the active session

    Example:
        >>> async with IconPackClient() as client:
        ...     controller = GenerationSessionController(client)
        ...     result = await controller.generate(request)
        ...     print(len(result.icons))
    """

    def __init__(
        self,
        client: IconPackClient,
        config: Optional[Config] = None,
        listener: Optional[SessionListener] = None,
    ):
        self.client = client
        self.config = config or get_config()
        self.listener = listener or SessionListener()
        self.session: Optional[GenerationSession] = None
        self.estimator: Optional[ProgressEstimator] = None
        self._stream_task: Optional[asyncio.Task] = None

    def _new_estimator(self) -> ProgressEstimator:
        progress = self.config.progress
        return ProgressEstimator(
            on_tick=self._on_tick,
            tick_seconds=progress["tick_seconds"],
            ceiling=progress["ceiling"],
        )

    async def start_session(self, request: GenerationRequest) -> GenerationSession:
        """
        Submit a request and create the session for it.

        Any previous session is torn down first.

        Args:
            request: Generation parameters

        Returns:
            The new active session

        Raises:
            SubmissionError: If the backend rejects the request or replies
                with a malformed body. No stream is opened.
        """
        await self.close()

        try:
            start = await self.client.start_generation(request)
        except SubmissionError as exc:
            logger.error(f"Submission failed: {exc}")
            self.listener.on_error(None, "Failed to start generation. Please try again.")
            raise

        skipped = providers.unknown_ids(
            provider_id for provider_id, enabled in start.enabled_services.items() if enabled
        )
        if skipped:
            logger.warning(f"Server enabled unknown providers, ignoring: {skipped}")

        session = GenerationSession.create(
            request_id=start.request_id,
            enabled_providers=providers.enabled_in_order(start.enabled_services),
            generations_per_service=request.generations_per_service,
            request=request,
            estimate_seconds=self.config.estimate_duration(
                request.icon_count,
                request.generations_per_service,
                request.has_reference_image,
            ),
        )
        session.state = SessionState.STREAMING
        self.session = session
        self.estimator = self._new_estimator()

        logger.info(
            f"Session {session.request_id} started with {len(session.jobs)} jobs "
            f"({', '.join(session.enabled_providers) or 'no providers'})"
        )
        self.listener.on_session_started(session)
        return session

    async def run(self) -> AggregatedResult:
        """
        Consume the push-event stream of the active session until it ends.

        Returns:
            The aggregated result on ``generation_complete``

        Raises:
            GenerationFailedError: On ``generation_error``
            StreamTransportError: If the connection fails or ends early
        """
        session = self._require_session()
        self._stream_task = asyncio.current_task()
        try:
            async with self.client.stream_events(session.request_id) as events:
                async for event in events:
                    if self.handle_event(event):
                        break
        except StreamTransportError as exc:
            logger.error(f"Event stream for {session.request_id} failed: {exc}")
            self._fail(session, CONNECTION_ERROR_MESSAGE)
            raise
        except Exception as exc:
            # The listener is not notified again; it may be what raised
            if not session.is_finished:
                logger.error(f"Session {session.request_id} aborted: {exc!r}")
                session.state = SessionState.ERROR
                session.error_message = GENERATION_FAILED_MESSAGE
            raise
        finally:
            self._stream_task = None
            if self.estimator is not None:
                self.estimator.stop_all()

        if session.state is SessionState.RESULTS:
            return session.result

        if session.state is SessionState.ERROR:
            raise GenerationFailedError(session.error_message or GENERATION_FAILED_MESSAGE)

        logger.error(f"Event stream for {session.request_id} ended without a terminal event")
        self._fail(session, CONNECTION_ERROR_MESSAGE)
        raise StreamTransportError("Event stream closed before generation finished")

    async def generate(self, request: GenerationRequest) -> AggregatedResult:
        """Submit a request and follow its stream to the end."""
        await self.start_session(request)
        return await self.run()

    def handle_event(self, event: ServerSentEvent) -> bool:
        """
        Dispatch one push event to the session state machine.

        Args:
            event: Decoded SSE event

        Returns:
            True if the event ended the session
        """
        session = self._require_session()
        if session.is_finished:
            return True

        if not is_known_event(event.event):
            logger.debug(f"Ignoring unrecognized event '{event.event}'")
            return False

        try:
            payload = decode_event(event.event, event.data)
        except StreamParseError as exc:
            return self._handle_malformed(session, exc)

        if isinstance(payload, ServiceUpdate):
            job = tracker.apply_update(session, payload, self.estimator)
            if job is not None:
                self.listener.on_job_updated(session, job)
            return False

        if isinstance(payload, GenerationComplete):
            self._complete(session, payload)
            return True

        if isinstance(payload, GenerationErrorEvent):
            self._fail(session, payload.message or GENERATION_FAILED_MESSAGE)
            return True

        return False

    def _handle_malformed(self, session: GenerationSession, exc: StreamParseError) -> bool:
        if exc.event == SERVICE_UPDATE:
            logger.warning(f"Dropping event: {exc}")
            return False
        if exc.event == GENERATION_COMPLETE:
            # Completion is still completion; only its metadata is lost
            logger.warning(f"Completing without metadata: {exc}")
            self._complete(session, GenerationComplete())
            return True
        if exc.event == GENERATION_ERROR:
            logger.warning(f"Failing without server message: {exc}")
            self._fail(session, "Generation failed with unknown error")
            return True
        return False

    def _complete(self, session: GenerationSession, payload: GenerationComplete) -> None:
        self.estimator.stop_all()
        session.result = aggregate(session, message=payload.message, trial_mode=payload.is_trial)
        session.state = SessionState.RESULTS
        logger.info(f"Session {session.request_id} complete")
        self.listener.on_complete(session, session.result)

    def _fail(self, session: GenerationSession, message: str) -> None:
        if self.estimator is not None:
            self.estimator.stop_all()
        session.state = SessionState.ERROR
        session.error_message = message
        self.listener.on_error(session, message)

    def _on_tick(self, key: Hashable, percent: float) -> None:
        session = self.session
        if session is None or not isinstance(key, JobKey):
            return
        if tracker.apply_progress(session, key, percent) is not None:
            self.listener.on_progress(session, key, percent)

    def _require_session(self) -> GenerationSession:
        if self.session is None:
            raise RuntimeError("No active generation session; call start_session() first")
        return self.session

    async def close(self) -> None:
        """
        Tear down the active session.

        Cancels every progress ramp and, if a stream is still being read by
        another task, cancels that task so its connection closes.
        """
        if self.estimator is not None:
            stopped = self.estimator.stop_all()
            if stopped:
                logger.debug(f"Cancelled {stopped} progress ramps on teardown")

        task = self._stream_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.debug(f"Superseded stream ended with {exc!r}")

        if self.session is not None:
            logger.info(f"Session {self.session.request_id} closed")
        self.session = None
        self.estimator = None
        self._stream_task = None
