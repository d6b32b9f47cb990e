"""
Tests for plugin data freshness and pull fetching.

These tests verify:
- Staleness per data strategy, including the threshold boundary
- Single and multi-location pulls through httpx
- Error markers on failed fetches
- Response parsing (iCal, XML, JSON, plain text)
"""

import json
from datetime import datetime, timedelta

import httpx
import pytest

from inkframe.models.plugin import new_plugin
from inkframe.services import content_source
from inkframe.services.content_source import FETCH_ERROR_PAYLOAD, is_stale, refresh_payload

NOW = datetime(2024, 1, 15, 12, 0, 0)


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def _pull_plugin(**fields):
    fields.setdefault("data_stale_minutes", 1)
    return new_plugin("Pull", data_strategy="pull", **fields)


class TestStaleness:
    def test_static_is_never_stale(self):
        assert not is_stale(new_plugin("Static"), NOW)

    def test_pull_never_fetched_is_stale(self):
        assert is_stale(_pull_plugin(polling_url="https://example.test"), NOW)

    def test_pull_threshold_boundary(self):
        plugin = _pull_plugin(polling_url="https://example.test", data_payload_updated_at=NOW)
        assert not is_stale(plugin, NOW + timedelta(seconds=15))
        assert not is_stale(plugin, NOW + timedelta(seconds=60))
        assert is_stale(plugin, NOW + timedelta(seconds=75))

    def test_pull_without_threshold_is_stale(self):
        plugin = _pull_plugin(polling_url="https://example.test", data_stale_minutes=None, data_payload_updated_at=NOW)
        assert is_stale(plugin, NOW)

    def test_push_recent_payload_counts_as_stale(self):
        plugin = new_plugin("Push", data_strategy="push", data_payload_updated_at=NOW - timedelta(minutes=10))
        assert is_stale(plugin, NOW)
        assert not is_stale(plugin, NOW + timedelta(hours=2))

    def test_push_without_payload_is_not_stale(self):
        assert not is_stale(new_plugin("Push", data_strategy="push"), NOW)

    def test_image_webhook_is_never_stale(self):
        plugin = new_plugin("Camera", plugin_type="image_webhook", data_strategy="pull", polling_url="https://x.test")
        assert not is_stale(plugin, NOW)


class TestRefreshPayload:
    def test_single_location_stores_response_as_is(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["accept"] = request.headers.get("accept")
            seen["token"] = request.headers.get("authorization")
            return httpx.Response(200, json=[{"temp": 3}])

        plugin = _pull_plugin(
            polling_url="https://api.example.test/weather?city={{ city }}",
            polling_header="Authorization: Bearer {{ token }}\nbroken line",
            configuration={"city": "Berlin", "token": "abc"},
        )
        with _client(handler) as client:
            assert refresh_payload(plugin, NOW, client)
        assert plugin.data_payload == [{"temp": 3}]
        assert plugin.data_payload_updated_at == NOW
        assert seen == {
            "url": "https://api.example.test/weather?city=Berlin",
            "accept": "application/json",
            "token": "Bearer abc",
        }

    def test_multiple_locations_are_indexed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/list":
                return httpx.Response(200, json=[1, 2])
            if request.url.path == "/down":
                return httpx.Response(503)
            if request.url.path == "/gone":
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"ok": True})

        plugin = _pull_plugin(
            polling_url="https://a.test/list\n\nhttps://a.test/obj\nhttps://a.test/down\nhttps://a.test/gone"
        )
        with _client(handler) as client:
            assert not refresh_payload(plugin, NOW, client)
        assert plugin.data_payload == {
            "IDX_0": {"data": [1, 2]},
            "IDX_1": {"ok": True},
            "IDX_2": {"data": ""},
            "IDX_3": FETCH_ERROR_PAYLOAD,
        }

    def test_error_status_body_is_still_parsed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"message": "city not found"})

        plugin = _pull_plugin(polling_url="https://api.example.test/weather")
        with _client(handler) as client:
            assert refresh_payload(plugin, NOW, client)
        assert plugin.data_payload == {"message": "city not found"}
        assert plugin.data_payload_updated_at == NOW

    def test_failure_stores_marker_and_moves_timestamp(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        plugin = _pull_plugin(polling_url="https://down.test", data_payload={"old": 1})
        with _client(handler) as client:
            assert not refresh_payload(plugin, NOW, client)
        assert plugin.data_payload == FETCH_ERROR_PAYLOAD
        assert plugin.data_payload_updated_at == NOW
        assert not is_stale(plugin, NOW + timedelta(seconds=30))

    def test_post_sends_resolved_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})

        plugin = _pull_plugin(
            polling_url="https://a.test/graphql",
            polling_verb="post",
            polling_body='{"user": "{{ user }}"}',
            configuration={"user": "ada"},
        )
        with _client(handler) as client:
            refresh_payload(plugin, NOW, client)
        assert seen == {"method": "POST", "body": {"user": "ada"}}

    def test_non_pull_strategies_do_nothing(self):
        plugin = new_plugin("Static", data_payload={"keep": True})
        assert refresh_payload(plugin, NOW)
        assert plugin.data_payload == {"keep": True}
        assert plugin.data_payload_updated_at is None


class TestResponseParsing:
    @pytest.mark.parametrize(
        "response,expected",
        [
            (httpx.Response(200, json={"a": 1}), {"a": 1}),
            (httpx.Response(200, text="plain words"), {"data": "plain words"}),
        ],
    )
    def test_json_or_text(self, response, expected):
        assert content_source.parse_response(response) == expected

    def test_xml_feed(self):
        body = "<rss><channel><title>News</title><item><title>One</title></item><item><title>Two</title></item></channel></rss>"
        response = httpx.Response(200, content=body.encode(), headers={"content-type": "application/rss+xml"})
        parsed = content_source.parse_response(response)
        channel = parsed["rss"]["rss"]["channel"]
        assert channel["title"] == "News"
        assert [item["title"] for item in channel["item"]] == ["One", "Two"]

    def test_broken_xml(self):
        response = httpx.Response(200, content=b"<rss><oops>", headers={"content-type": "text/xml"})
        assert content_source.parse_response(response) == {"error": "Failed to parse XML response"}

    def test_header_lines(self):
        assert content_source.parse_header_lines("A: 1\nno colon\nB:two:parts\n") == {"A": "1", "B": "two:parts"}


CALENDAR = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//inkframe//tests//EN
BEGIN:VEVENT
UID:standup@example.test
SUMMARY:Standup
DTSTART:20240116T090000Z
DTEND:20240116T091500Z
END:VEVENT
BEGIN:VEVENT
UID:retro@example.test
SUMMARY:Retro
DTSTART:20240110T150000Z
END:VEVENT
BEGIN:VEVENT
UID:holiday@example.test
SUMMARY:Holiday
DTSTART;VALUE=DATE:20240120
END:VEVENT
BEGIN:VEVENT
UID:old@example.test
SUMMARY:Kickoff
DTSTART:20240101T090000Z
END:VEVENT
BEGIN:VEVENT
UID:later@example.test
SUMMARY:Offsite
DTSTART:20240301T090000Z
END:VEVENT
END:VCALENDAR
"""


class TestIcalParsing:
    def test_calendar_events_in_window_sorted_by_start(self, frozen_now):
        response = httpx.Response(200, content=CALENDAR.encode(), headers={"content-type": "text/calendar; charset=utf-8"})
        events = content_source.parse_response(response)["ical"]
        assert [event["SUMMARY"] for event in events] == ["Retro", "Standup", "Holiday"]
        assert events[1]["DTSTART"] == "2024-01-16T09:00:00+00:00"
        assert events[1]["DTEND"] == "2024-01-16T09:15:00+00:00"
        assert events[1]["UID"] == "standup@example.test"
        assert events[2]["DTSTART"] == "2024-01-20T00:00:00+00:00"

    def test_detected_by_body_despite_content_type(self, frozen_now):
        response = httpx.Response(200, content=CALENDAR.encode(), headers={"content-type": "application/json"})
        assert len(content_source.parse_response(response)["ical"]) == 3

    def test_truncated_calendar(self, frozen_now):
        body = b"BEGIN:VCALENDAR\nVERSION:2.0\n"
        response = httpx.Response(200, content=body, headers={"content-type": "text/calendar"})
        assert content_source.parse_response(response) == {"error": "Failed to parse iCal response"}
