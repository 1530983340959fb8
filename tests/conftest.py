"""
Shared fixtures: a scripted HTTP backend, SSE body builder and a listener
that records every hook call.
"""

import base64
import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from icon_pack.config import Config
from icon_pack.render import SessionListener


@pytest.fixture
def config(tmp_path) -> Config:
    """Config with a fast estimator and output under tmp_path."""
    cfg = Config()
    cfg.progress.update({
        "tick_seconds": 0.01,
        "short_duration": 0.2,
        "long_duration": 0.4,
        "more_duration": 0.2,
    })
    cfg.output["directory"] = str(tmp_path / "outputs")
    return cfg


def encode_sse(events: List[Tuple[str, Union[str, Dict[str, Any]]]]) -> bytes:
    """Build an event-stream body from (event name, payload) pairs."""
    chunks = []
    for name, payload in events:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        chunks.append(f"event: {name}\ndata: {data}\n\n")
    return "".join(chunks).encode("utf-8")


@pytest.fixture
def sse_body() -> Callable[..., bytes]:
    return encode_sse


@pytest.fixture
def icons_payload() -> Callable[[int], List[Dict[str, str]]]:
    """Wire icons: ``icons_payload(3)`` gives three base64 entries."""
    def build(count: int, prefix: str = "icon") -> List[Dict[str, str]]:
        return [
            {
                "base64Data": base64.b64encode(f"{prefix}-{i}".encode()).decode(),
                "description": f"{prefix} {i}",
            }
            for i in range(1, count + 1)
        ]
    return build


class ScriptedBackend:
    """
    httpx.MockTransport handler with canned responses per route.

    Every request is recorded as (method, path, parsed JSON body or None).
    """

    def __init__(self):
        self.requests: List[Tuple[str, str, Optional[Any]]] = []
        self.routes: Dict[Tuple[str, str], Dict[str, Any]] = {}

    def add(self, method: str, path: str, status_code: int = 200, **response_kwargs) -> None:
        """Script a route; ``response_kwargs`` go to ``httpx.Response``."""
        self.routes[(method, path)] = dict(status_code=status_code, **response_kwargs)

    def start(self, request_id: str = "req-1", enabled: Optional[Dict[str, bool]] = None) -> None:
        enabled = {"flux": True} if enabled is None else enabled
        self.add("POST", "/generate-stream", json={"requestId": request_id, "enabledServices": enabled})

    def stream(self, request_id: str, body: bytes, status_code: int = 200) -> None:
        self.add(
            "GET", f"/stream/{request_id}", status_code,
            content=body, headers={"Content-Type": "text/event-stream"},
        )

    def paths(self) -> List[str]:
        return [path for _, path, _ in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = None
        if request.content:
            try:
                body = json.loads(request.content)
            except ValueError:
                body = request.content
        self.requests.append((request.method, request.url.path, body))

        scripted = self.routes.get((request.method, request.url.path))
        if scripted is None:
            return httpx.Response(404, json={"detail": "not scripted"})
        return httpx.Response(**scripted)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


class RecordingListener(SessionListener):
    """Collects every hook call as (hook name, args)."""

    def __init__(self):
        self.calls: List[Tuple[str, tuple]] = []

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def on_session_started(self, session):
        self.calls.append(("session_started", (session.request_id,)))

    def on_job_updated(self, session, job):
        self.calls.append(("job_updated", (str(job.key), job.status.value)))

    def on_progress(self, session, key, percent):
        self.calls.append(("progress", (str(key), percent)))

    def on_complete(self, session, result):
        self.calls.append(("complete", (len(result.icons),)))

    def on_error(self, session, message):
        self.calls.append(("error", (message,)))

    def on_more_icons(self, session, provider_id, icons):
        self.calls.append(("more_icons", (provider_id, len(icons))))

    def on_notice(self, message, error=False):
        self.calls.append(("notice", (message, error)))


@pytest.fixture
def recorder() -> RecordingListener:
    return RecordingListener()
