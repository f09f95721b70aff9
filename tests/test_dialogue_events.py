from __future__ import annotations

import json

import pytest

from calls.errors import UpstreamError, UpstreamProtocolError
from dialogue.events import (
    BETA_REVISION,
    GA_REVISION,
    BetaIgnoredEvent,
    ErrorEvent,
    GaIgnoredEvent,
    OutputTextDone,
    ResponseDone,
    ResponseTextDone,
    TranscriptCompleted,
    decode_event,
)


def test_decodes_transcript_completed() -> None:
    event = decode_event(
        json.dumps(
            {
                "type": "conversation.item.input_audio_transcription.completed",
                "event_id": "ev_1",
                "item_id": "item_1",
                "content_index": 0,
                "transcript": "my name is Dana",
            }
        )
    )

    assert isinstance(event, TranscriptCompleted)
    assert event.transcript == "my name is Dana"


def test_decodes_response_lifecycle() -> None:
    text = decode_event('{"type": "response.text.done", "response_id": "resp_1", "item_id": "i", "text": "Hello"}')
    done = decode_event('{"type": "response.done", "response": {"id": "resp_1", "status": "completed"}}')

    assert isinstance(text, ResponseTextDone)
    assert text.text == "Hello"
    assert isinstance(done, ResponseDone)
    assert done.response.status == "completed"


def test_decodes_error_event() -> None:
    event = decode_event('{"type": "error", "error": {"type": "invalid_request_error", "message": "bad"}}')

    assert isinstance(event, ErrorEvent)
    assert event.error.message == "bad"


def test_known_noise_decodes_to_ignored_event() -> None:
    assert isinstance(decode_event('{"type": "response.text.delta", "delta": "He"}'), BetaIgnoredEvent)
    assert isinstance(decode_event('{"type": "response.output_text.delta", "delta": "He"}', GA_REVISION), GaIgnoredEvent)


def test_revisions_have_separate_vocabularies() -> None:
    ga = decode_event('{"type": "response.output_text.done", "response_id": "r", "text": "Hi"}', GA_REVISION)

    assert isinstance(ga, OutputTextDone)
    assert isinstance(ga, ResponseTextDone)
    with pytest.raises(UpstreamProtocolError):
        decode_event('{"type": "response.output_text.done", "response_id": "r", "text": "Hi"}', BETA_REVISION)


@pytest.mark.parametrize(
    "raw",
    [
        '{"type": "response.audio.delta", "delta": "AAAA"}',
        '{"type": "response.done"}',
        '{"type": "conversation.item.input_audio_transcription.completed"}',
        "not json at all",
        '{"missing": "type"}',
    ],
)
def test_undecodable_messages_raise_protocol_error(raw: str) -> None:
    with pytest.raises(UpstreamProtocolError) as excinfo:
        decode_event(raw)

    assert isinstance(excinfo.value, UpstreamError)


def test_unknown_revision_is_rejected() -> None:
    with pytest.raises(UpstreamProtocolError):
        decode_event('{"type": "session.created"}', "1999-01-01")
