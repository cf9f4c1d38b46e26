"""Unit tests for capture models and protocol events."""

import pytest

from archiver.models.capture import (
    UNKNOWN_PROMPT,
    ArchiveRecord,
    CaptureRule,
    CapturedResponse,
    ResponseMeta,
    TargetInfo,
    TargetKind,
    normalize_headers,
)
from archiver.models.events import (
    LoadingFinished,
    RequestPaused,
    TargetCreated,
    TargetDestroyed,
    TargetEventHandler,
    handler_method,
    parse_event,
)


class TestTargetInfo:
    """Tests for target snapshots."""

    def test_from_protocol_payload(self):
        target = TargetInfo.model_validate({
            "targetId": "t1", "type": "service_worker", "url": "https://example.com/sw.js", "attached": False,
        })

        assert target.target_id == "t1"
        assert target.kind == TargetKind.SERVICE_WORKER

    @pytest.mark.parametrize("target_type,kind", [
        ("page", TargetKind.PAGE),
        ("service_worker", TargetKind.SERVICE_WORKER),
        ("iframe", TargetKind.OTHER),
        (None, TargetKind.OTHER),
    ])
    def test_kind(self, target_type, kind):
        assert TargetKind.from_protocol(target_type) == kind


class TestCaptureRule:
    """Tests for capture rules."""

    def test_file_keys(self):
        rule = CaptureRule.model_validate({"from": "https://example.com/*", "intercept": "*.png"})

        assert rule.from_patterns == ["https://example.com/*"]
        assert rule.intercept_patterns == ["*.png"]
        assert not rule.service_worker_only
        assert not rule.enable_raw_capture

    def test_field_names(self):
        rule = CaptureRule(from_patterns=["*"], intercept_patterns=["*.jpg"], enable_raw_capture=True)

        assert rule.enable_raw_capture


class TestHeaders:
    """Tests for header normalization."""

    def test_entry_list(self):
        headers = normalize_headers([
            {"name": "Set-Cookie", "value": "a=1"},
            {"name": "Set-Cookie", "value": "b=2"},
            {"name": "Content-Type", "value": "image/png"},
        ])

        assert headers == {"Set-Cookie": "a=1, b=2", "Content-Type": "image/png"}

    def test_mapping(self):
        assert normalize_headers({"content-length": 12}) == {"content-length": "12"}

    def test_empty(self):
        assert normalize_headers(None) == {}

    def test_content_type_falls_back_to_mime_type(self):
        meta = ResponseMeta.from_network_response({"status": 200, "headers": {}, "mimeType": "image/gif"})

        assert meta.content_type == "image/gif"
        assert meta.header("X-Missing") is None


class TestCapturedResponse:
    """Tests for captured response snapshots."""

    @pytest.mark.parametrize("status,expected", [(200, True), (204, True), (304, False), (500, False), (None, False)])
    def test_is_successful(self, status, expected):
        response = CapturedResponse(
            initiator="https://example.com/", via_pausing_channel=True, request_id="1",
            response=ResponseMeta(status=status),
        )

        assert response.is_successful is expected


class TestArchiveRecord:
    """Tests for archive records."""

    def test_extra_keys_are_kept(self):
        record = ArchiveRecord.model_validate({"id": 42, "unixTime": 1, "prompt": None, "model": "v6"})

        assert record.to_json_dict() == {"id": "42", "prompt": UNKNOWN_PROMPT, "unixTime": 1, "model": "v6"}

    def test_null_extras_are_kept(self):
        record = ArchiveRecord.model_validate({"id": "1", "unixTime": 1, "seed": None})

        assert record.to_json_dict() == {"id": "1", "prompt": UNKNOWN_PROMPT, "unixTime": 1, "seed": None}

    def test_fractional_unix_time(self):
        record = ArchiveRecord.model_validate({"id": "1", "unixTime": 1709640000.5})

        assert record.unix_time == 1709640000.5
        assert record.to_json_dict()["unixTime"] == 1709640000.5


class TestEvents:
    """Tests for typed protocol events."""

    def test_parse_request_paused(self):
        event = parse_event("Fetch.requestPaused", {
            "requestId": "interception-1",
            "request": {"url": "https://cdn.example.com/a.png"},
            "networkId": "1000.1",
            "responseStatusCode": 200,
            "responseHeaders": [{"name": "Content-Type", "value": "image/png"}],
        })

        assert isinstance(event, RequestPaused)
        assert event.network_id == "1000.1"
        assert event.is_response_stage
        meta = event.response_meta()
        assert meta.status == 200
        assert meta.content_type == "image/png"
        assert meta.url == "https://cdn.example.com/a.png"

    def test_request_stage_pause(self):
        event = RequestPaused.model_validate({"requestId": "1", "request": {"url": "https://example.com/"}})

        assert not event.is_response_stage

    def test_unhandled_event(self):
        assert parse_event("Page.frameNavigated", {}) is None

    def test_handler_method(self):
        class Recorder(TargetEventHandler):
            async def on_target_created(self, event):
                pass

            async def on_target_info_changed(self, event):
                pass

            async def on_target_destroyed(self, event):
                pass

            async def on_target_crashed(self, event):
                pass

            async def on_detached_from_target(self, event):
                pass

        recorder = Recorder()

        assert handler_method(recorder, TargetDestroyed(target_id="t1")) == recorder.on_target_destroyed
        assert handler_method(recorder, parse_event("Target.targetCreated", {
            "targetInfo": {"targetId": "t1", "type": "page", "url": ""}
        })) == recorder.on_target_created
        with pytest.raises(TypeError):
            handler_method(recorder, LoadingFinished(request_id="1"))

    def test_target_created_payload(self):
        event = TargetCreated.model_validate({"targetInfo": {"targetId": "t1", "type": "page", "url": "about:blank"}})

        assert event.target_info.url == "about:blank"
