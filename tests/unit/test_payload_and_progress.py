"""Unit tests for payload normalization and progress reporting."""

from unittest.mock import MagicMock

import pytest

from app.domains.push.payload import (
    build_payload_data,
    ensure_absolute_url,
    normalize_data,
    resolve_base_url,
    validate_payload,
)
from app.domains.push.progress import ProgressReporter
from app.exceptions.push import InvalidPushPayloadError
from app.schemas.push import DispatchPhase, PushPayload, PushProgress


class TestPayload:
    """Test cases for payload helpers."""

    def test_normalize_data_stringifies_values(self):
        data = normalize_data({"episode": 12, "dub": True, "sub": False, "rating": 8.5, "note": None})

        assert data == {"episode": "12", "dub": "true", "sub": "false", "rating": "8.5", "note": ""}

    def test_normalize_data_handles_missing(self):
        assert normalize_data(None) == {}

    def test_reserved_keys_overwrite_caller_values(self):
        """Test that url and baseUrl always come from the dispatcher."""
        payload = PushPayload(
            title="New episode",
            body="Episode 12 is out",
            url="/anime/42",
            data={"url": "/spoofed", "baseUrl": "https://evil.example", "animeId": 42},
        )

        data = build_payload_data(payload, "https://rs-anime.lovable.app")

        assert data["url"] == "/anime/42"
        assert data["baseUrl"] == "https://rs-anime.lovable.app"
        assert data["animeId"] == "42"

    def test_base_url_is_set_without_click_url(self):
        payload = PushPayload(title="Hello", body="World")

        data = build_payload_data(payload, "https://rs-anime.lovable.app")

        assert data == {"baseUrl": "https://rs-anime.lovable.app"}

    @pytest.mark.parametrize("title", ["", "   "])
    def test_blank_title_is_rejected(self, title):
        with pytest.raises(InvalidPushPayloadError) as exc_info:
            validate_payload(PushPayload(title=title, body="body"))
        assert exc_info.value.status_code == 422

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("https://cdn.example/poster.png", "https://cdn.example/poster.png"),
            ("//cdn.example/poster.png", "https://cdn.example/poster.png"),
            ("/anime/42", "https://site.example/anime/42"),
            ("anime/42", "https://site.example/anime/42"),
            (None, None),
            ("", None),
        ],
    )
    def test_ensure_absolute_url(self, value, expected):
        assert ensure_absolute_url(value, "https://site.example") == expected

    def test_resolve_base_url_precedence(self):
        default = "https://default.example"

        assert resolve_base_url({"baseUrl": "https://data.example/"}, "https://origin.example", default) == (
            "https://data.example"
        )
        assert resolve_base_url({}, "https://origin.example", default) == "https://origin.example"
        assert resolve_base_url({}, None, default) == default


class TestProgressReporter:
    """Test cases for ProgressReporter."""

    def test_snapshots_are_copies(self):
        """Test that later mutation does not change a delivered snapshot."""
        received = []
        reporter = ProgressReporter(received.append)
        progress = PushProgress(phase=DispatchPhase.sending, total_tokens=10)

        reporter.emit(progress)
        progress.sent = 10
        reporter.emit(progress)

        assert [p.sent for p in received] == [0, 10]

    def test_phase_never_moves_backwards(self):
        reporter = ProgressReporter()
        reporter.emit(PushProgress(phase=DispatchPhase.cleanup))

        with pytest.raises(ValueError):
            reporter.emit(PushProgress(phase=DispatchPhase.sending))

    def test_same_phase_may_repeat(self):
        reporter = ProgressReporter()
        reporter.emit(PushProgress(phase=DispatchPhase.sending))
        reporter.emit(PushProgress(phase=DispatchPhase.sending, sent=5))

        assert reporter.phase == DispatchPhase.sending

    def test_callback_errors_are_ignored(self):
        """Test that a failing callback does not break the dispatch."""
        callback = MagicMock(side_effect=RuntimeError("ui gone"))
        reporter = ProgressReporter(callback)

        reporter.emit(PushProgress(phase=DispatchPhase.sending))
        reporter.emit(PushProgress(phase=DispatchPhase.done))

        assert callback.call_count == 2
        assert reporter.phase == DispatchPhase.done
