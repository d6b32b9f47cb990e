"""
Tests for playlist and item resolution.

These tests verify:
- First matching playlist wins in creation order
- Round-robin by oldest last_displayed_at, never-shown first
- Cursor never moves backwards
- Pause and sleep helpers
"""

from datetime import datetime, time, timedelta

from inkframe.models.playlist import PlaylistItem
from inkframe.services import scheduler

NOW = datetime(2024, 1, 15, 12, 0, 0)  # Monday


class TestResolveActivePlaylist:
    def test_first_active_playlist_in_creation_order(self, db, device, make_playlist):
        first = make_playlist(device, name="first")
        make_playlist(device, name="second")
        assert scheduler.resolve_active_playlist(db, device, NOW).id == first.id

    def test_skips_inactive_and_out_of_window(self, db, device, make_playlist):
        make_playlist(device, name="disabled", is_active=False)
        make_playlist(device, name="night", active_from=time(22, 0), active_until=time(6, 0))
        make_playlist(device, name="weekend", weekdays=[0, 6])
        fallback = make_playlist(device, name="always")
        assert scheduler.resolve_active_playlist(db, device, NOW).id == fallback.id

    def test_overlapping_windows_resolve_by_precedence(self, db, device, make_playlist):
        lunch = make_playlist(device, name="lunch", active_from=time(11, 0), active_until=time(13, 0))
        make_playlist(device, name="daytime", active_from=time(8, 0), active_until=time(18, 0))
        assert scheduler.resolve_active_playlist(db, device, NOW).id == lunch.id

    def test_none_when_nothing_matches(self, db, device, make_playlist):
        make_playlist(device, name="night", active_from=time(22, 0), active_until=time(6, 0))
        assert scheduler.resolve_active_playlist(db, device, NOW) is None

    def test_uses_device_timezone(self, db, device, make_playlist):
        device.timezone = "Asia/Tokyo"  # 21:00 local
        db.commit()
        evening = make_playlist(device, name="evening", active_from=time(20, 0), active_until=time(23, 0))
        assert scheduler.resolve_active_playlist(db, device, NOW).id == evening.id


class TestResolveNextItem:
    def test_round_robin_never_shown_first_then_oldest(self, db, device, make_playlist, make_plugin):
        a, b = make_plugin("A"), make_plugin("B")
        playlist = make_playlist(device, [a, b])
        picks = [
            scheduler.resolve_next_item(db, playlist, NOW + timedelta(seconds=step)).plugin_id
            for step in range(4)
        ]
        assert picks == [a.id, b.id, a.id, b.id]

    def test_ties_fall_back_to_order(self, db, device, make_playlist, make_plugin):
        a, b = make_plugin("A"), make_plugin("B")
        playlist = make_playlist(device, [a, b])
        picks = [scheduler.resolve_next_item(db, playlist, NOW).plugin_id for _ in range(3)]
        assert picks == [a.id, b.id, a.id]

    def test_oldest_timestamp_wins(self, db, device, make_playlist, make_plugin):
        a, b, c = make_plugin("A"), make_plugin("B"), make_plugin("C")
        playlist = make_playlist(device, [a, b, c])
        items = db.query(PlaylistItem).filter(PlaylistItem.playlist_id == playlist.id).order_by(PlaylistItem.order).all()
        items[0].last_displayed_at = NOW - timedelta(minutes=1)
        items[1].last_displayed_at = NOW - timedelta(minutes=10)
        items[2].last_displayed_at = NOW - timedelta(minutes=5)
        db.commit()
        assert scheduler.resolve_next_item(db, playlist, NOW).plugin_id == b.id

    def test_selection_stamps_now_and_never_decreases(self, db, device, make_playlist, make_plugin):
        playlist = make_playlist(device, [make_plugin("A")])
        item = scheduler.resolve_next_item(db, playlist, NOW)
        assert item.last_displayed_at == NOW
        scheduler.resolve_next_item(db, playlist, NOW - timedelta(hours=1))
        assert item.last_displayed_at == NOW

    def test_inactive_items_are_skipped(self, db, device, make_playlist, make_plugin):
        a, b = make_plugin("A"), make_plugin("B")
        playlist = make_playlist(device, [a, b])
        db.query(PlaylistItem).filter(PlaylistItem.plugin_id == a.id).update({"is_active": False})
        db.commit()
        assert scheduler.resolve_next_item(db, playlist, NOW).plugin_id == b.id
        assert scheduler.resolve_next_item(db, playlist, NOW).plugin_id == b.id

    def test_empty_playlist_returns_none(self, db, device, make_playlist):
        assert scheduler.resolve_next_item(db, make_playlist(device), NOW) is None


class TestSleepAndPause:
    def test_pause_remaining_seconds(self, device):
        device.pause_until = NOW + timedelta(minutes=30)
        assert scheduler.is_paused(device, NOW)
        assert scheduler.pause_remaining_seconds(device, NOW) == 1800
        assert not scheduler.is_paused(device, NOW + timedelta(minutes=31))

    def test_pause_refresh_is_capped(self, device):
        device.pause_until = NOW + timedelta(days=3)
        assert scheduler.pause_remaining_seconds(device, NOW) == scheduler.MAX_SLEEP_REFRESH_SEC

    def test_sleep_window_wraps_midnight(self, device):
        device.sleep_mode_enabled = True
        device.sleep_mode_from = time(22, 0)
        device.sleep_mode_to = time(6, 0)
        early = datetime(2024, 1, 15, 4, 0)
        assert scheduler.is_sleeping(device, early)
        assert scheduler.sleep_remaining_seconds(device, early) == 2 * 3600
        assert not scheduler.is_sleeping(device, NOW)

    def test_sleep_disabled(self, device):
        device.sleep_mode_enabled = False
        device.sleep_mode_from = time(0, 0)
        device.sleep_mode_to = time(23, 59)
        assert not scheduler.is_sleeping(device, NOW)
