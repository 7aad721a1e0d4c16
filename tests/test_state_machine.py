"""Tests for the watch-session state machine."""

import pytest

from domain.models import TrackerState


def _milestones(sink):
    return [p["milestone"] for p in sink.named("video_progress")]


def test_initial_state(harness):
    assert harness.tracker.state == TrackerState.DISABLED
    assert harness.tracker.session.tracking_enabled is False


def test_play_before_enable_is_reverted_and_ignored(harness):
    harness.source.start()

    assert harness.source.calls == ["pause"]
    assert harness.sink.events == []
    assert harness.tracker.state == TrackerState.DISABLED
    assert harness.tracker.session.current_play_started_at is None


def test_enable_starts_muted_then_unmutes_after_playback(harness):
    harness.tracker.enable_tracking()
    assert harness.tracker.state == TrackerState.IDLE
    assert harness.source.calls == []  # waits for the start delay

    harness.advance(0.5)
    assert harness.source.calls == ["mute", "play"]

    harness.source.start()
    harness.advance(0.5)
    assert "unmute" not in harness.source.calls

    harness.advance(0.5)
    assert harness.source.calls[-1] == "unmute"
    # Programmatic unmute is not a user toggle
    assert harness.sink.named("video_mute_toggle") == []


def test_enable_twice_is_noop(harness):
    harness.enable()
    harness.tracker.enable_tracking()
    harness.advance(1.0)
    assert harness.source.calls.count("play") == 1


def test_pause_after_thirty_seconds(harness):
    harness.enable()
    harness.source.start()
    harness.advance(30.0)
    harness.source.stop()

    (pause,) = harness.sink.named("video_pause")
    assert pause["current_time"] == pytest.approx(30.0)
    assert pause["session_watch_time"] == 30
    assert pause["total_watch_time"] == 30
    assert _milestones(harness.sink) == [25]
    assert harness.tracker.state == TrackerState.PAUSED


def test_start_event_carries_duration_and_context(harness):
    harness.enable()
    harness.source.start()

    (start,) = harness.sink.named("video_start")
    assert start["duration"] == 100.0
    assert start["video_id"] == "test_video"
    assert start["study_id"] == "test_study"
    (play,) = harness.sink.named("video_play")
    assert play == {
        "video_id": "test_video",
        "current_time": 0.0,
        "play_count": 1,
        "is_replay": False,
        "study_id": "test_study",
    }


def test_video_start_once_across_replays(harness):
    harness.enable()
    for _ in range(3):
        harness.source.start()
        harness.advance(5.0)
        harness.source.stop()
        harness.advance(1.0)

    assert harness.sink.names.count("video_start") == 1
    plays = harness.sink.named("video_play")
    assert [p["play_count"] for p in plays] == [1, 2, 3]
    assert [p["is_replay"] for p in plays] == [False, True, True]


def test_duplicate_play_callback_not_double_counted(harness):
    harness.enable()
    harness.source.start()
    harness.source.fire("play")

    assert harness.tracker.session.play_count == 1
    assert len(harness.sink.named("video_play")) == 1


def test_pause_when_not_playing_is_noop(harness):
    harness.enable()
    harness.source.fire("pause")
    assert harness.sink.events == []

    harness.source.start()
    harness.advance(3.0)
    harness.source.stop()
    harness.source.fire("pause")
    assert len(harness.sink.named("video_pause")) == 1


def test_end_fires_milestone_100_once(harness):
    harness.enable()
    harness.source.start()
    harness.advance(99.2)
    harness.source.finish()

    s = harness.tracker.session
    assert s.completion_count == 1
    assert 100 in s.milestones_reached
    assert _milestones(harness.sink) == [25, 50, 75, 100]
    assert harness.tracker.state == TrackerState.ENDED

    harness.source.fire("ended")
    assert s.completion_count == 1
    assert _milestones(harness.sink).count(100) == 1


def test_replay_after_end(harness):
    harness.enable()
    harness.source.start()
    harness.advance(99.2)
    harness.source.finish()

    harness.source.seek(0.0)
    harness.source.start()
    assert harness.tracker.state == TrackerState.PLAYING
    harness.advance(99.2)
    harness.source.finish()

    assert harness.tracker.session.completion_count == 2
    assert _milestones(harness.sink) == [25, 50, 75, 100]
    assert harness.sink.named("video_play")[-1]["is_replay"] is True


def test_poll_reaching_end_without_ended_event(harness):
    harness.enable()
    harness.source.start()
    harness.advance(101.0)  # position clamps at 100

    assert _milestones(harness.sink) == [25, 50, 75, 100]

    harness.source.finish()
    assert harness.tracker.session.completion_count == 1
    assert _milestones(harness.sink).count(100) == 1


def test_milestone_not_reemitted_after_seek(harness):
    harness.enable()
    harness.source.start()
    harness.advance(60.0)
    assert _milestones(harness.sink) == [25, 50]

    harness.source.seek(10.0)
    harness.advance(70.0)
    assert _milestones(harness.sink) == [25, 50, 75]


def test_milestone_properties(harness):
    harness.enable()
    harness.source.start()
    harness.advance(26.0)

    (progress,) = harness.sink.named("video_progress")
    assert progress["milestone"] == 25
    assert progress["current_time"] == 26
    assert progress["total_watch_time_so_far"] == 26
    assert progress["play_count"] == 1


def test_watch_time_is_sum_of_intervals(harness):
    harness.enable()
    intervals = [10.0, 7.25, 2.5]
    for length in intervals:
        harness.source.start()
        harness.advance(length)
        harness.source.stop()
        harness.advance(5.0)  # paused time does not count

    assert harness.tracker.session.accumulated_watch_seconds == pytest.approx(sum(intervals))
    totals = [p["total_watch_time"] for p in harness.sink.named("video_pause")]
    assert totals == [10, 17, 20]


def test_backwards_clock_counts_zero(harness):
    harness.enable()
    harness.source.start()
    harness.clock.now -= 5.0
    harness.source.stop()

    assert harness.tracker.session.accumulated_watch_seconds == 0.0
    assert harness.sink.named("video_pause")[0]["session_watch_time"] == 0


def test_final_report_sent_once(harness):
    harness.enable()
    harness.source.start()
    harness.advance(45.0)

    first = harness.tracker.report_final_results()  # visibility hidden
    second = harness.tracker.report_final_results()  # unload

    assert first is not None
    assert second is None
    (summary,) = harness.sink.named("video_session_complete")
    assert summary["total_watch_time_seconds"] == 45
    assert summary["play_count"] == 1
    assert summary["completion_count"] == 0
    assert summary["milestones_reached"] == [25]
    assert summary["milestone_25_reached"] is True
    assert summary["milestone_50_reached"] is False
    assert summary["max_progress_percent"] == 45
    assert summary["completion_rate_percent"] == 45
    assert summary["duration"] == 100.0
    assert summary["video_id"] == "test_video"


def test_final_report_counts_trailing_interval_once(harness):
    harness.enable()
    harness.source.start()
    harness.advance(20.0)
    harness.tracker.report_final_results()

    s = harness.tracker.session
    assert s.accumulated_watch_seconds == pytest.approx(20.0)
    assert s.current_play_started_at == harness.clock.now  # still playing
    assert s.final_report_sent is True

    harness.source.stop()
    (pause,) = harness.sink.named("video_pause")
    assert pause["session_watch_time"] == 0
    assert pause["total_watch_time"] == 20


def test_pause_reported_just_before_ended(harness):
    harness.enable()
    harness.source.start()
    harness.advance(99.5)
    harness.source.stop()
    harness.source.fire("ended")

    s = harness.tracker.session
    assert s.completion_count == 1
    assert _milestones(harness.sink) == [25, 50, 75, 100]
    assert harness.tracker.state == TrackerState.ENDED
    assert len(harness.sink.named("video_pause")) == 1
    assert s.accumulated_watch_seconds == pytest.approx(99.5)


def test_ended_ignored_before_playback(harness):
    harness.enable()
    harness.source.fire("ended")
    assert harness.tracker.session.completion_count == 0
    assert harness.tracker.state == TrackerState.IDLE


def test_playback_continues_after_minimise(harness):
    harness.enable()
    harness.source.start()
    harness.advance(20.0)

    summary = harness.tracker.report_final_results()  # minimised
    assert summary["total_watch_time_seconds"] == 20
    assert harness.tracker.is_polling

    harness.advance(40.0)  # restored, still playing
    assert _milestones(harness.sink) == [25, 50]

    harness.source.stop()
    (pause,) = harness.sink.named("video_pause")
    assert pause["current_time"] == pytest.approx(60.0)
    assert pause["session_watch_time"] == 40
    assert pause["total_watch_time"] == 60
    assert len(harness.sink.named("video_session_complete")) == 1


def test_close_stops_polling_and_events(harness):
    harness.enable()
    harness.source.start()
    harness.advance(5.0)

    harness.tracker.close()
    assert not harness.tracker.is_polling

    count = len(harness.sink.events)
    harness.source.stop()
    harness.source.start()
    harness.advance(60.0)
    assert len(harness.sink.events) == count
    assert not harness.tracker.is_polling


def test_final_report_requires_started_session(harness):
    assert harness.tracker.report_final_results() is None
    harness.enable()
    assert harness.tracker.report_final_results() is None
    assert harness.tracker.session.final_report_sent is False
    assert harness.sink.events == []


def test_final_report_skipped_when_nothing_watched(harness):
    harness.enable()
    harness.source.start()
    harness.advance(0.3)
    harness.source.stop()

    assert harness.tracker.report_final_results() is None
    assert harness.sink.named("video_session_complete") == []
    assert harness.tracker.session.final_report_sent is True


def test_unknown_duration_skips_milestones(make_harness):
    h = make_harness(duration=0.0)
    h.enable()
    h.source.start()
    h.advance(30.0)
    h.source.stop()

    assert h.sink.named("video_progress") == []
    summary = h.tracker.report_final_results()
    assert summary["completion_rate_percent"] == 0
    assert summary["max_progress_percent"] == 0
    assert summary["total_watch_time_seconds"] == 30


def test_duration_learned_late_then_fixed(make_harness):
    h = make_harness(duration=0.0)
    h.enable()
    h.source.start()
    h.advance(10.0)
    assert h.sink.named("video_progress") == []

    h.source.set_duration(20.0)
    h.advance(1.0)
    assert _milestones(h.sink) == [25, 50]
    assert h.tracker.session.duration_seconds == 20.0

    h.source.set_duration(50.0)
    h.source.fire("timeupdate")
    assert h.tracker.session.duration_seconds == 20.0


def test_source_errors_are_tolerated(harness):
    harness.enable()
    harness.source.start()
    harness.source.broken = True
    harness.advance(40.0)

    assert harness.sink.named("video_progress") == []
    assert harness.tracker.is_polling

    harness.source.broken = False
    harness.advance(1.0)
    assert _milestones(harness.sink) == [25]


def test_poll_stops_when_paused_and_never_doubles(harness):
    harness.enable()
    harness.source.start()
    harness.advance(2.0)
    assert harness.scheduler.pending == 1  # only the poll

    harness.source.stop()
    harness.source.start()
    harness.source.stop()
    harness.source.start()
    assert harness.scheduler.pending == 1

    harness.source.stop()
    harness.advance(1.0)
    assert not harness.tracker.is_polling
    assert harness.scheduler.pending == 0

    harness.source.start()
    assert harness.tracker.is_polling


def test_mute_change_is_edge_triggered(harness):
    harness.enable()
    harness.source.start()
    harness.advance(2.0)

    harness.source.muted = True
    harness.source.fire("volumechange")
    harness.source.fire("volumechange")
    harness.tracker.toggle_mute()
    harness.source.fire("volumechange")

    toggles = harness.sink.named("video_mute_toggle")
    assert [t["is_muted"] for t in toggles] == [True, False]
    assert toggles[0]["current_time"] == pytest.approx(2.0)


def test_mute_ignored_while_disabled(harness):
    harness.source.muted = True
    harness.source.fire("volumechange")
    harness.tracker.toggle_mute()

    assert harness.sink.events == []
    assert harness.source.calls == []


def test_state_change_callback(harness):
    seen = []
    harness.tracker.set_on_state_change(seen.append)
    harness.enable()
    harness.source.start()
    harness.source.stop()

    assert seen == [TrackerState.IDLE, TrackerState.PLAYING, TrackerState.PAUSED]


def test_snapshot_includes_open_interval(harness):
    harness.enable()
    harness.source.start()
    harness.advance(12.0)

    snap = harness.tracker.snapshot()
    assert snap["total_watch_time_seconds"] == 12
    assert snap["state"] == "PLAYING"
    # snapshot has no side effects
    assert harness.tracker.session.accumulated_watch_seconds == 0.0


def test_events_wait_for_sink_in_order(make_harness):
    h = make_harness(sink_ready=False)
    h.enable()
    h.source.start()
    assert h.sink.events == []

    h.sink.ready = True
    h.source.stop()
    assert h.sink.events == []

    h.advance(0.1)
    assert h.sink.names == ["video_start", "video_play", "video_pause"]


def test_final_summary_single_attempt_when_sink_unavailable(make_harness):
    h = make_harness(sink_ready=False)
    h.enable()
    h.source.start()
    h.advance(10.0)

    h.tracker.report_final_results()
    assert h.sink.names == ["video_session_complete"]
    h.advance(5.0)
    assert h.sink.names == ["video_session_complete"]
