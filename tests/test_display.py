"""
Tests for device-level resolution (services.display).

These tests verify:
- Cache reuse inside the staleness window and re-render after it
- Mirror, pause and sleep short-circuits
- Uploaded images for image webhook plugins
- Mashup items and misconfiguration fallback
- Rasterization failure propagates
"""

import os
from datetime import datetime, time, timedelta

import pytest

from inkframe.models.device import new_device
from inkframe.models.playlist import PlaylistItem
from inkframe.services import content_source, display, image_cache, storage
from inkframe.services.rasterizer import RasterizationError

NOW = datetime(2024, 1, 15, 12, 0, 0)


@pytest.fixture
def fake_fetch(monkeypatch):
    calls = []

    def _refresh(plugin, now, client=None):
        calls.append(now)
        plugin.data_payload = {"greeting": f"fetch {len(calls)}"}
        plugin.data_payload_updated_at = now
        return True

    monkeypatch.setattr(content_source, "refresh_payload", _refresh)
    return calls


class TestSinglePlugin:
    def test_cache_reused_within_staleness_window(self, db, device, make_playlist, make_plugin, pipeline, fake_fetch):
        plugin = make_plugin("Pull", data_strategy="pull", data_stale_minutes=1, polling_url="https://x.test")
        make_playlist(device, [plugin])

        first = display.resolve_for_device(db, device, pipeline, NOW)
        second = display.resolve_for_device(db, device, pipeline, NOW + timedelta(seconds=15))
        third = display.resolve_for_device(db, device, pipeline, NOW + timedelta(seconds=75))

        assert first.image_uuid == second.image_uuid
        assert third.image_uuid != first.image_uuid
        assert len(fake_fetch) == 2
        assert device.current_screen_image == third.image_uuid
        assert plugin.current_image == third.image_uuid

    def test_static_plugin_renders_once(self, db, device, make_playlist, make_plugin, pipeline, html_renderer):
        make_playlist(device, [make_plugin("Static")])
        first = display.resolve_for_device(db, device, pipeline, NOW)
        second = display.resolve_for_device(db, device, pipeline, NOW + timedelta(hours=5))
        assert first.image_uuid == second.image_uuid
        assert first.image_path == f"images/generated/{first.image_uuid}.png"
        assert first.source == "playlist"
        assert len(html_renderer.calls) == 1

    def test_round_robin_across_calls(self, db, device, make_playlist, make_plugin, pipeline):
        a, b = make_plugin("A"), make_plugin("B")
        make_playlist(device, [a, b])
        display.resolve_for_device(db, device, pipeline, NOW)
        display.resolve_for_device(db, device, pipeline, NOW + timedelta(seconds=1))
        assert a.current_image and b.current_image and a.current_image != b.current_image

    def test_template_error_shows_error_frame_without_caching(self, db, device, make_playlist, make_plugin, pipeline):
        plugin = make_plugin("Broken", markup="{% if %}")
        make_playlist(device, [plugin])
        result = display.resolve_for_device(db, device, pipeline, NOW)
        assert result.image_uuid
        assert device.current_screen_image == result.image_uuid
        assert plugin.current_image is None

    def test_playlist_refresh_override(self, db, device, make_playlist, make_plugin, pipeline):
        make_playlist(device, [make_plugin()], refresh_time=120)
        assert display.resolve_for_device(db, device, pipeline, NOW).refresh_rate == 120

    def test_no_schedulable_content_shows_setup(self, db, device, pipeline):
        result = display.resolve_for_device(db, device, pipeline, NOW)
        assert result.source == "setup"
        assert result.image_path.startswith("images/default-screens/setup_")
        assert device.current_screen_image is None

    def test_sweep_between_store_and_commit_keeps_raster(
        self, db, device, make_playlist, make_plugin, pipeline, monkeypatch
    ):
        make_playlist(device, [make_plugin()])
        original_store = image_cache.store

        def _store_then_sweep(raster, extension):
            image_uuid = original_store(raster, extension)
            image_cache.cleanup_generated(db)
            return image_uuid

        monkeypatch.setattr(image_cache, "store", _store_then_sweep)
        result = display.resolve_for_device(db, device, pipeline, NOW)
        assert result.source == "playlist"
        assert os.path.exists(storage.absolute_path(result.image_path))

    def test_legacy_firmware_gets_bmp(self, db, device, make_playlist, make_plugin, pipeline):
        device.last_firmware_version = "1.4.2"
        make_playlist(device, [make_plugin()])
        assert display.resolve_for_device(db, device, pipeline, NOW).filename.endswith(".bmp")


class TestShortCircuits:
    def test_mirror_uses_source_device_raster(self, db, device, make_playlist, make_plugin, pipeline):
        make_playlist(device, [make_plugin()])
        source = display.resolve_for_device(db, device, pipeline, NOW)
        follower = new_device("01:02:03:04:05:06", mirror_device_id=device.id)
        db.add(follower)
        db.commit()
        mirrored = display.resolve_for_device(db, follower, pipeline, NOW)
        assert mirrored.source == "mirror"
        assert mirrored.image_uuid == source.image_uuid

    def test_mirror_without_raster_shows_setup(self, db, device, pipeline):
        follower = new_device("01:02:03:04:05:07", mirror_device_id=device.id)
        db.add(follower)
        db.commit()
        assert display.resolve_for_device(db, follower, pipeline, NOW).source == "setup"

    def test_mirror_records_current_screen(self, db, device, make_playlist, make_plugin, pipeline):
        make_playlist(device, [make_plugin()])
        source = display.resolve_for_device(db, device, pipeline, NOW)
        follower = new_device("01:02:03:04:05:08", mirror_device_id=device.id)
        db.add(follower)
        db.commit()
        display.resolve_for_device(db, follower, pipeline, NOW)
        assert follower.current_screen_image == source.image_uuid
        current = display.current_screen(db, follower, pipeline)
        assert (current.source, current.image_uuid) == ("current", source.image_uuid)

    def test_mirror_of_a_mirror(self, db, device, make_playlist, make_plugin, pipeline):
        make_playlist(device, [make_plugin()])
        source = display.resolve_for_device(db, device, pipeline, NOW)
        first = new_device("01:02:03:04:05:09", mirror_device_id=device.id)
        db.add(first)
        db.commit()
        second = new_device("01:02:03:04:05:0A", mirror_device_id=first.id)
        db.add(second)
        db.commit()
        display.resolve_for_device(db, first, pipeline, NOW)
        result = display.resolve_for_device(db, second, pipeline, NOW)
        assert (result.source, result.image_uuid) == ("mirror", source.image_uuid)

    def test_pause(self, db, device, make_playlist, make_plugin, pipeline):
        make_playlist(device, [make_plugin()])
        device.pause_until = NOW + timedelta(minutes=20)
        result = display.resolve_for_device(db, device, pipeline, NOW)
        assert (result.source, result.refresh_rate) == ("pause", 1200)
        assert result.filename.startswith("sleep_")
        assert db.query(PlaylistItem).first().last_displayed_at is None

    def test_sleep_window(self, db, device, make_playlist, make_plugin, pipeline):
        make_playlist(device, [make_plugin()])
        device.sleep_mode_enabled = True
        device.sleep_mode_from = time(11, 0)
        device.sleep_mode_to = time(13, 30)
        result = display.resolve_for_device(db, device, pipeline, NOW)
        assert (result.source, result.refresh_rate) == ("sleep", 5400)


class TestImageWebhookItems:
    def test_uploaded_image_is_shown_as_delivered(self, db, device, make_playlist, make_plugin, pipeline, html_renderer):
        image_uuid = image_cache.store(b"\x89PNG\r\n\x1a\nuploaded", "png")
        plugin = make_plugin("Camera", plugin_type="image_webhook", current_image=image_uuid)
        make_playlist(device, [plugin])
        device.rotate = 90
        db.commit()
        result = display.resolve_for_device(db, device, pipeline, NOW)
        assert (result.source, result.image_uuid) == ("playlist", image_uuid)
        assert plugin.current_image == image_uuid
        assert html_renderer.calls == []

    def test_without_upload_shows_setup(self, db, device, make_playlist, make_plugin, pipeline):
        make_playlist(device, [make_plugin("Camera", plugin_type="image_webhook")])
        assert display.resolve_for_device(db, device, pipeline, NOW).source == "setup"


class TestMashup:
    def test_mashup_item_renders_composite(self, db, device, make_playlist, make_plugin, pipeline, html_renderer):
        left, right = make_plugin("Left"), make_plugin("Right")
        playlist = make_playlist(device)
        db.add(
            PlaylistItem(
                playlist_id=playlist.id,
                mashup={"layout": "1Lx1R", "plugin_ids": [left.id, right.id], "name": "Pair"},
                order=1,
            )
        )
        db.commit()
        result = display.resolve_for_device(db, device, pipeline, NOW)
        assert result.source == "mashup"
        assert "mashup--1Lx1R" in html_renderer.calls[0]["markup"]
        assert left.current_image is None

    def test_misconfigured_mashup_still_yields_a_raster(self, db, device, make_playlist, make_plugin, pipeline):
        playlist = make_playlist(device)
        db.add(PlaylistItem(playlist_id=playlist.id, mashup={"layout": "2x2", "plugin_ids": [make_plugin().id]}, order=1))
        db.commit()
        result = display.resolve_for_device(db, device, pipeline, NOW)
        assert result.source == "mashup"
        assert result.image_uuid


def test_rasterization_failure_propagates(db, device, make_playlist, make_plugin, pipeline, monkeypatch):
    make_playlist(device, [make_plugin()])

    def _boom(*args, **kwargs):
        raise RasterizationError("encoder exploded")

    monkeypatch.setattr(display, "rasterize", _boom)
    with pytest.raises(RasterizationError):
        display.resolve_for_device(db, device, pipeline, NOW)
