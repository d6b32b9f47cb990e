import os
import json
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable
from xml.etree import ElementTree
import httpx
from icalendar import Calendar
from inkframe.models.plugin import Plugin
from inkframe.services import scheduler
from inkframe.services.scheduler import as_utc_naive
from inkframe.services.templating import TemplateRenderError, default_renderer

FETCH_TIMEOUT_SEC = float(os.getenv("INKFRAME_FETCH_TIMEOUT_SEC", "10"))
PUSH_FRESH_WINDOW = timedelta(hours=1)
ICAL_WINDOW_PAST = timedelta(days=7)
ICAL_WINDOW_AHEAD = timedelta(days=30)
FETCH_ERROR_PAYLOAD = {"error": "Failed to fetch data"}
DEFAULT_HEADERS = {"User-Agent": "inkframe", "Accept": "application/json"}

logger = logging.getLogger(__name__)


class ContentFetchError(Exception):
    pass


def is_stale(plugin: Plugin, now: datetime) -> bool:
    if plugin.plugin_type == "image_webhook":
        return False
    strategy = (plugin.data_strategy or "static").lower()
    if strategy == "static":
        return False
    updated_at = plugin.data_payload_updated_at
    now = as_utc_naive(now)
    if strategy == "push":
        # a push within the last hour keeps the plugin re-rendering
        return updated_at is not None and updated_at > now - PUSH_FRESH_WINDOW
    if updated_at is None or not plugin.data_stale_minutes:
        return True
    return now > updated_at + timedelta(minutes=plugin.data_stale_minutes)


def _xml_to_dict(element: ElementTree.Element) -> Any:
    children = list(element)
    if not children and not element.attrib:
        return (element.text or "").strip()
    node: dict[str, Any] = {f"@{key}": value for key, value in element.attrib.items()}
    for child in children:
        value = _xml_to_dict(child)
        tag = child.tag.split("}", 1)[-1]
        if tag in node:
            if not isinstance(node[tag], list):
                node[tag] = [node[tag]]
            node[tag].append(value)
        else:
            node[tag] = value
    text_value = (element.text or "").strip()
    if text_value:
        node["#text"] = text_value
    return node


def _as_utc(value: date | datetime) -> datetime:
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _ical_value(value: Any) -> Any:
    if hasattr(value, "dt"):
        return _as_utc(value.dt).isoformat()
    if isinstance(value, list):
        return [_ical_value(item) for item in value]
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        return str(value)
    return value.to_ical().decode("utf-8")


def _parse_ical(response: httpx.Response) -> Any | None:
    """Upcoming events (one week back, thirty days ahead) sorted by start."""
    content_type = response.headers.get("content-type", "").lower()
    body = response.text
    if "text/calendar" not in content_type and "BEGIN:VCALENDAR" not in body:
        return None
    try:
        calendar = Calendar.from_ical(body)
        now = as_utc_naive(scheduler.utcnow()).replace(tzinfo=timezone.utc)
        window_start, window_end = now - ICAL_WINDOW_PAST, now + ICAL_WINDOW_AHEAD
        events = []
        for event in calendar.walk("VEVENT"):
            start = event.get("DTSTART")
            if start is None:
                continue
            starts_at = _as_utc(start.dt)
            if window_start <= starts_at <= window_end:
                events.append((starts_at, {key: _ical_value(value) for key, value in event.items()}))
    except ValueError as exc:
        logger.warning("iCal parse failed: %s", exc)
        return {"error": "Failed to parse iCal response"}
    events.sort(key=lambda pair: pair[0])
    return {"ical": [event for _, event in events]}


def _parse_xml(response: httpx.Response) -> Any | None:
    if "xml" not in response.headers.get("content-type", "").lower():
        return None
    try:
        root = ElementTree.fromstring(response.content)
    except ElementTree.ParseError:
        logger.warning("XML parse failed (%d bytes)", len(response.content))
        return {"error": "Failed to parse XML response"}
    return {"rss": {root.tag.split("}", 1)[-1]: _xml_to_dict(root)}}


def _parse_json_or_text(response: httpx.Response) -> Any:
    body = response.text
    try:
        return json.loads(body)
    except ValueError:
        return {"data": body}


RESPONSE_PARSERS: list[Callable[[httpx.Response], Any | None]] = [_parse_ical, _parse_xml, _parse_json_or_text]


def parse_response(response: httpx.Response) -> Any:
    for parser in RESPONSE_PARSERS:
        parsed = parser(response)
        if parsed is not None:
            return parsed
    return {"data": response.text}


def parse_header_lines(raw: str) -> dict[str, str]:
    headers: dict[str, str] = {}
    for line in (raw or "").splitlines():
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        if key.strip():
            headers[key.strip()] = value.strip()
    return headers


def _resolve(template: str | None, variables: dict[str, Any]) -> str:
    try:
        return default_renderer.render_string(template, variables)
    except TemplateRenderError as exc:
        raise ContentFetchError(str(exc)) from exc


def polling_urls(plugin: Plugin) -> list[str]:
    resolved = _resolve(plugin.polling_url, plugin.configuration or {})
    return [line.strip() for line in resolved.splitlines() if line.strip()]


def _fetch_one(client: httpx.Client, plugin: Plugin, url: str, headers: dict[str, str]) -> Any:
    verb = (plugin.polling_verb or "get").lower()
    try:
        if verb == "post":
            body = _resolve(plugin.polling_body, plugin.configuration or {})
            response = client.post(url, headers=headers, content=body.encode("utf-8"))
        else:
            response = client.get(url, headers=headers)
    except httpx.HTTPError as exc:
        raise ContentFetchError(f"{verb.upper()} {url} failed: {exc}") from exc
    if not response.is_success:
        logger.warning("Plugin %s (%s) %s %s answered %d", plugin.id, plugin.name, verb.upper(), url, response.status_code)
    return parse_response(response)


def refresh_payload(plugin: Plugin, now: datetime, client: httpx.Client | None = None) -> bool:
    """
    Pull fresh data for a `pull` plugin and store it on the row.

    Failures are recorded as an error payload; the timestamp always moves so a
    broken endpoint is retried only after the staleness window. Returns True
    when every location answered.
    """
    if (plugin.data_strategy or "").lower() != "pull":
        return True

    try:
        urls = polling_urls(plugin)
        headers = dict(DEFAULT_HEADERS)
        headers.update(parse_header_lines(_resolve(plugin.polling_header, plugin.configuration or {})))
    except ContentFetchError as exc:
        logger.warning("Plugin %s (%s) polling config invalid: %s", plugin.id, plugin.name, exc)
        plugin.data_payload = dict(FETCH_ERROR_PAYLOAD)
        plugin.data_payload_updated_at = as_utc_naive(now)
        return False

    if not urls:
        logger.warning("Plugin %s (%s) has no polling URL", plugin.id, plugin.name)
        return False

    owns_client = client is None
    if owns_client:
        client = httpx.Client(timeout=FETCH_TIMEOUT_SEC, follow_redirects=True)
    ok = True
    try:
        if len(urls) == 1:
            try:
                payload = _fetch_one(client, plugin, urls[0], headers)
            except ContentFetchError as exc:
                logger.warning("Plugin %s (%s) fetch failed: %s", plugin.id, plugin.name, exc)
                payload = dict(FETCH_ERROR_PAYLOAD)
                ok = False
        else:
            payload = {}
            for index, url in enumerate(urls):
                try:
                    value = _fetch_one(client, plugin, url, headers)
                except ContentFetchError as exc:
                    logger.warning("Plugin %s (%s) fetch %d failed: %s", plugin.id, plugin.name, index, exc)
                    value = dict(FETCH_ERROR_PAYLOAD)
                    ok = False
                if isinstance(value, list):
                    value = {"data": value}
                payload[f"IDX_{index}"] = value
    finally:
        if owns_client:
            client.close()

    plugin.data_payload = payload
    plugin.data_payload_updated_at = as_utc_naive(now)
    return ok


def apply_push(plugin: Plugin, merge_variables: dict[str, Any], now: datetime) -> None:
    plugin.data_payload = merge_variables
    plugin.data_payload_updated_at = as_utc_naive(now)
