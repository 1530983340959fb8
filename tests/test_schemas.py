"""
Tests for wire models and push-event decoding.
"""

import pytest
from pydantic import ValidationError

from icon_pack.errors import StreamParseError
from icon_pack.schemas import (
    ExportRequest,
    GenerationComplete,
    GenerationRequest,
    MoreIconsResponse,
    ServiceUpdate,
    decode_event,
)


def test_generation_request_wire_names():
    request = GenerationRequest(
        general_description="pastel weather",
        individual_descriptions=["sun", "  ", "rain "],
        generations_per_service=2,
    )

    assert request.to_wire() == {
        "iconCount": 9,
        "generationsPerService": 2,
        "individualDescriptions": ["sun", "rain"],
        "generalDescription": "pastel weather",
    }
    assert not request.has_reference_image


def test_generation_request_needs_theme_or_image():
    with pytest.raises(ValidationError):
        GenerationRequest(general_description="   ")

    request = GenerationRequest(reference_image_base64="aW1n")
    assert request.has_reference_image


def test_generation_request_limits_generations():
    with pytest.raises(ValidationError):
        GenerationRequest(general_description="x", generations_per_service=3)


def test_export_request_body():
    body = ExportRequest(
        request_id="req-1", service_name="flux", generation_index=1, remove_background=True
    ).to_wire()

    assert body == {"requestId": "req-1", "serviceName": "flux", "generationIndex": 1, "removeBackground": True}


def test_decode_service_update():
    event = decode_event("service_update", '{"serviceName": "flux-gen1", "status": "started", "icons": null}')

    assert isinstance(event, ServiceUpdate)
    assert event.service_name == "flux-gen1"
    assert event.icons == []


@pytest.mark.parametrize("data, reason", [
    ("{not json", "invalid JSON"),
    ("[1, 2]", "not a JSON object"),
    ('{"status": "started"}', "missing serviceName"),
    ('{"serviceName": "flux", "status": "paused"}', "unknown status"),
    ('{"serviceName": "flux", "status": "success", "icons": [{"base64Data": "@@@"}]}', "bad base64"),
])
def test_decode_service_update_rejects(data, reason):
    with pytest.raises(StreamParseError) as info:
        decode_event("service_update", data)

    assert info.value.event == "service_update", reason


def test_decode_unknown_event_name():
    with pytest.raises(StreamParseError):
        decode_event("heartbeat", "{}")


def test_generation_complete_trial_flag():
    assert decode_event("generation_complete", "").is_trial is False
    assert GenerationComplete(trial_mode=True).is_trial is True
    assert GenerationComplete(message="Trial results ready").is_trial is True
    assert GenerationComplete(message="Trial", trial_mode=False).is_trial is False


def test_more_icons_response():
    response = MoreIconsResponse.model_validate({"status": "error", "message": "busy", "newIcons": None})

    assert response.status == "error"
    assert response.new_icons == []


def test_seed_round_trips():
    request = GenerationRequest(general_description="x", seed=42)
    assert request.to_wire()["seed"] == 42

    event = decode_event("service_update", '{"serviceName": "flux-gen1", "status": "success", "seed": 12345}')
    assert event.seed == 12345
