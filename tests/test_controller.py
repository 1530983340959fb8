"""
Tests for the generation session controller against a scripted backend.

Each scenario scripts ``POST /generate-stream`` and ``GET /stream/{id}``
through httpx.MockTransport and drives the controller with asyncio.run.
"""

import asyncio

import pytest

from icon_pack.client import IconPackClient
from icon_pack.controller import GenerationSessionController
from icon_pack.errors import GenerationFailedError, StreamTransportError, SubmissionError
from icon_pack.render import ConsoleRenderer, SessionListener
from icon_pack.schemas import GenerationRequest
from icon_pack.session import JobKey, JobStatus, SessionState
from icon_pack.sse import ServerSentEvent
from icon_pack.utils.output_manager import OutputManager

REQUEST = GenerationRequest(general_description="pastel weather icons")


def run_generate(backend, config, listener=None, request=REQUEST):
    """Run one full session; returns (controller, result or raised exception)."""
    async def main():
        async with IconPackClient("http://backend", config=config, transport=backend.transport()) as client:
            controller = GenerationSessionController(client, config=config, listener=listener)
            try:
                outcome = await controller.generate(request)
            except Exception as exc:
                outcome = exc
            running = controller.estimator.running_count() if controller.estimator else 0
            return controller, outcome, running

    return asyncio.run(main())


def test_started_then_success(backend, config, sse_body, icons_payload, recorder):
    backend.start("req-1", {"flux": True})
    backend.stream("req-1", sse_body([
        ("service_update", {"serviceName": "flux-gen1", "status": "started"}),
        ("service_update", {
            "serviceName": "flux-gen1", "status": "success",
            "icons": icons_payload(3), "originalGridImageBase64": "Z3JpZA==",
        }),
        ("generation_complete", {"requestId": "req-1", "message": "done"}),
    ]))

    controller, result, running = run_generate(backend, config, recorder)
    session = controller.session

    assert session.state is SessionState.RESULTS
    assert len(result.icons) == 3
    assert [job.key for job in result.by_provider["flux"]] == [JobKey("flux", 1)]
    assert session.get_job(JobKey("flux", 1)).progress_percent == 100.0
    assert running == 0, "No estimator may outlive the session"
    assert recorder.names()[0] == "session_started"
    assert recorder.names()[-1] == "complete"
    assert backend.requests[0][2] == REQUEST.to_wire()


def test_disabled_provider_updates_ignored(backend, config, sse_body, icons_payload):
    backend.start("req-2", {"flux": True, "recraft": False})
    backend.stream("req-2", sse_body([
        ("service_update", {"serviceName": "recraft-gen1", "status": "success", "icons": icons_payload(2)}),
        ("service_update", {"serviceName": "flux-gen1", "status": "success", "icons": icons_payload(1)}),
        ("generation_complete", {}),
    ]))

    controller, result, _ = run_generate(backend, config)

    assert list(controller.session.jobs) == [JobKey("flux", 1)]
    assert controller.session.enabled_providers == ("flux",)
    assert len(result.icons) == 1
    assert result.by_provider["recraft"] == []


def test_jobs_without_events_stay_pending(backend, config, sse_body, icons_payload):
    backend.start("req-3", {"flux": True, "gpt": True})
    backend.stream("req-3", sse_body([
        ("service_update", {"serviceName": "flux-gen1", "status": "success", "icons": icons_payload(2)}),
        ("generation_complete", {}),
    ]))

    controller, result, _ = run_generate(backend, config)

    assert controller.session.get_job(JobKey("gpt", 1)).status is JobStatus.PENDING
    assert result.by_provider["gpt"] == []
    assert len(result.icons) == 2


def test_malformed_update_is_dropped(backend, config, sse_body, icons_payload):
    backend.start("req-4", {"flux": True})
    backend.stream("req-4", sse_body([
        ("service_update", "{this is not json"),
        ("heartbeat", {}),
        ("service_update", {"serviceName": "flux-gen1", "status": "success", "icons": icons_payload(1)}),
        ("generation_complete", {}),
    ]))

    controller, result, _ = run_generate(backend, config)

    assert controller.session.state is SessionState.RESULTS
    assert len(result.icons) == 1


def test_malformed_completion_still_completes(backend, config, sse_body, icons_payload):
    backend.start("req-5", {"flux": True})
    backend.stream("req-5", sse_body([
        ("service_update", {"serviceName": "flux-gen1", "status": "success", "icons": icons_payload(1)}),
        ("generation_complete", "[]"),
    ]))

    controller, result, _ = run_generate(backend, config)

    assert controller.session.state is SessionState.RESULTS
    assert len(result.icons) == 1


def test_generation_error(backend, config, sse_body, recorder):
    backend.start("req-6", {"flux": True, "recraft": True})
    backend.stream("req-6", sse_body([
        ("service_update", {"serviceName": "flux-gen1", "status": "started"}),
        ("generation_error", {"message": "Quota exceeded"}),
        ("generation_complete", {}),
    ]))

    controller, outcome, running = run_generate(backend, config, recorder)

    assert isinstance(outcome, GenerationFailedError)
    assert str(outcome) == "Quota exceeded"
    assert controller.session.state is SessionState.ERROR
    assert controller.session.error_message == "Quota exceeded"
    assert controller.session.result is None, "Nothing after the terminal event is processed"
    assert running == 0
    assert ("error", ("Quota exceeded",)) in recorder.calls


def test_generation_error_default_message(backend, config, sse_body):
    backend.start("req-7", {"flux": True})
    backend.stream("req-7", sse_body([("generation_error", {})]))

    controller, outcome, _ = run_generate(backend, config)

    assert isinstance(outcome, GenerationFailedError)
    assert controller.session.error_message == "Generation failed"


def test_stream_ends_without_terminal_event(backend, config, sse_body):
    backend.start("req-8", {"flux": True})
    backend.stream("req-8", sse_body([
        ("service_update", {"serviceName": "flux-gen1", "status": "started"}),
    ]))

    controller, outcome, running = run_generate(backend, config)

    assert isinstance(outcome, StreamTransportError)
    assert controller.session.state is SessionState.ERROR
    assert controller.session.error_message == "Connection error. Please try again."
    assert running == 0


def test_stream_rejected(backend, config):
    backend.start("req-9", {"flux": True})
    backend.stream("req-9", b"", status_code=503)

    controller, outcome, _ = run_generate(backend, config)

    assert isinstance(outcome, StreamTransportError)
    assert controller.session.error_message == "Connection error. Please try again."


@pytest.mark.parametrize("scripted", [
    {"status_code": 500, "json": {"error": "boom"}},
    {"status_code": 200, "content": b"not json"},
    {"status_code": 200, "json": {"enabledServices": {"flux": True}}},
])
def test_submission_failure_opens_no_stream(backend, config, recorder, scripted):
    backend.add("POST", "/generate-stream", **scripted)

    controller, outcome, _ = run_generate(backend, config, recorder)

    assert isinstance(outcome, SubmissionError)
    assert controller.session is None
    assert backend.paths() == ["/generate-stream"], "No stream may be opened"
    assert recorder.names() == ["error"]


def test_new_session_tears_down_previous(backend, config):
    backend.start("req-10", {"flux": True, "recraft": True})

    async def main():
        async with IconPackClient("http://backend", config=config, transport=backend.transport()) as client:
            controller = GenerationSessionController(client, config=config)
            await controller.start_session(REQUEST)
            first = controller.estimator
            for name in ("flux-gen1", "recraft-gen1"):
                controller.handle_event(ServerSentEvent(
                    event="service_update", data=f'{{"serviceName": "{name}", "status": "started"}}'
                ))
            assert first.running_count() == 2

            await controller.start_session(REQUEST)
            assert first.running_count() == 0
            assert controller.estimator is not first
            assert controller.estimator.running_count() == 0
            await controller.close()

    asyncio.run(main())


def test_progress_ticks_reach_listener(backend, config, recorder):
    backend.start("req-11", {"flux": True})

    async def main():
        async with IconPackClient("http://backend", config=config, transport=backend.transport()) as client:
            controller = GenerationSessionController(client, config=config, listener=recorder)
            session = await controller.start_session(REQUEST)
            controller.handle_event(ServerSentEvent(
                event="service_update", data='{"serviceName": "flux-gen1", "status": "started"}'
            ))
            await asyncio.sleep(0.05)
            progress = session.get_job(JobKey("flux", 1)).progress_percent
            await controller.close()
            return progress

    progress = asyncio.run(main())

    assert 0 < progress < 100
    assert "progress" in recorder.names()


def test_estimate_uses_long_ramp_for_large_batches(backend, config):
    backend.start("req-12", {"flux": True})
    request = GenerationRequest(general_description="x", generations_per_service=2)

    async def main():
        async with IconPackClient("http://backend", config=config, transport=backend.transport()) as client:
            controller = GenerationSessionController(client, config=config)
            session = await controller.start_session(request)
            await controller.close()
            return session

    session = asyncio.run(main())

    assert session.estimate_seconds == config.progress["long_duration"]
    assert list(session.jobs) == [JobKey("flux", 1), JobKey("flux", 2)]


class FailingListener(SessionListener):
    def on_job_updated(self, session, job):
        if job.status is JobStatus.SUCCESS:
            raise OSError("image file is truncated")


def test_listener_failure_stops_every_ramp(backend, config, sse_body, icons_payload):
    backend.start("req-13", {"flux": True, "recraft": True})
    backend.stream("req-13", sse_body([
        ("service_update", {"serviceName": "recraft-gen1", "status": "started"}),
        ("service_update", {"serviceName": "flux-gen1", "status": "success", "icons": icons_payload(1)}),
        ("generation_complete", {}),
    ]))

    controller, outcome, running = run_generate(backend, config, FailingListener())

    assert isinstance(outcome, OSError)
    assert running == 0, "Recraft's ramp must not outlive the aborted session"
    assert controller.session.state is SessionState.ERROR
    assert controller.session.error_message == "Generation failed"


def test_console_save_failure_does_not_end_session(backend, config, sse_body, icons_payload, tmp_path,
                                                   monkeypatch, capsys):
    def refuse(self, job):
        raise OSError("No space left on device")

    monkeypatch.setattr(OutputManager, "save_job_icons", refuse)
    backend.start("req-14", {"flux": True})
    backend.stream("req-14", sse_body([
        ("service_update", {"serviceName": "flux-gen1", "status": "success", "icons": icons_payload(2)}),
        ("generation_complete", {}),
    ]))

    controller, result, _ = run_generate(backend, config, ConsoleRenderer(output_dir=str(tmp_path)))

    assert controller.session.state is SessionState.RESULTS
    assert len(result.icons) == 2
    assert "Could not save icons for flux-gen1" in capsys.readouterr().err
