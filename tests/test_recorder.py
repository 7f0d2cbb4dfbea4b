"""
ActionRecorder 测试
"""

from datetime import datetime, timedelta

import pytest

from agent import ActionRecorder, EventBus, events
from agent.errors import AlreadyRecordingError, PlaybackError
from agent.models import Action


def _actions(*types, gap=1.0):
    start = datetime(2024, 1, 1, 12, 0, 0)
    return [
        Action(type=t, parameters={"n": i}, timestamp=start + timedelta(seconds=gap * i))
        for i, t in enumerate(types)
    ]


def test_start_recording_twice_raises():
    recorder = ActionRecorder()
    recorder.start_recording()
    with pytest.raises(AlreadyRecordingError):
        recorder.start_recording()
    assert recorder.is_recording


def test_record_is_ignored_when_idle():
    recorder = ActionRecorder()
    recorder.record("mouse_click", {"x": 1, "y": 2})
    assert recorder.actions() == []


def test_start_recording_clears_buffer():
    recorder = ActionRecorder()
    recorder.start_recording()
    recorder.record("mouse_click", {"x": 1, "y": 2})
    recorder.stop_recording()

    recorder.start_recording()
    assert recorder.stop_recording() == []


def test_capacity_evicts_oldest():
    recorder = ActionRecorder(capacity=3)
    recorder.start_recording()
    for i in range(5):
        recorder.record("keyboard_key", {"key": str(i)})
    actions = recorder.stop_recording()

    assert [a.parameters["key"] for a in actions] == ["2", "3", "4"]
    assert not recorder.is_recording


def test_stop_recording_returns_copy():
    recorder = ActionRecorder()
    recorder.start_recording()
    recorder.record("mouse_click", {"x": 1, "y": 2})
    actions = recorder.stop_recording()
    actions.clear()
    assert len(recorder.actions()) == 1


def test_actions_since_filters_by_timestamp():
    recorder = ActionRecorder()
    recorder.start_recording()
    recorder.record("mouse_click", {"x": 1, "y": 2})
    later = datetime.now() + timedelta(seconds=60)
    assert recorder.actions_since(later) == []
    assert len(recorder.actions_since(datetime(2000, 1, 1))) == 1


def test_playback_respects_gaps_and_speed():
    sleeps = []
    dispatched = []
    recorder = ActionRecorder(sleep=sleeps.append)

    recorder.playback(_actions("a", "b", "c"), 2.0, dispatched.append)

    assert [a.type for a in dispatched] == ["a", "b", "c"]
    assert sleeps == pytest.approx([0.5, 0.5])


@pytest.mark.parametrize("speed", [0, -1.5])
def test_playback_non_positive_speed_means_normal(speed):
    sleeps = []
    recorder = ActionRecorder(sleep=sleeps.append)
    recorder.playback(_actions("a", "b"), speed, lambda action: None)
    assert sleeps == pytest.approx([1.0])


def test_playback_stops_at_first_failure():
    dispatched = []

    def dispatch(action):
        dispatched.append(action.type)
        if action.type == "b":
            raise RuntimeError("window vanished")

    recorder = ActionRecorder(sleep=lambda seconds: None)
    with pytest.raises(PlaybackError) as exc_info:
        recorder.playback(_actions("a", "b", "c"), 1.0, dispatch)

    assert dispatched == ["a", "b"]
    assert exc_info.value.index == 1
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert exc_info.value.to_dict()["index"] == 1


def test_playback_emits_progress():
    bus = EventBus()
    progress = []
    bus.subscribe(lambda name, payload: progress.append(payload)
                  if name == events.ACTION_PLAYBACK_PROGRESS else None)
    recorder = ActionRecorder(event_bus=bus, sleep=lambda seconds: None)

    recorder.playback(_actions("a", "b"), 1.0, lambda action: None)

    assert [(p["current"], p["total"]) for p in progress] == [(1, 2), (2, 2)]
    assert progress[0]["action"]["type"] == "a"


def test_playback_does_not_rerecord():
    recorder = ActionRecorder(sleep=lambda seconds: None)
    recorder.start_recording()

    def dispatch(action):
        recorder.record(action.type, action.parameters)

    recorder.playback(_actions("a", "b"), 1.0, dispatch)
    assert recorder.stop_recording() == []

    # 回放结束后恢复正常录制
    recorder.start_recording()
    recorder.record("mouse_click", {"x": 1, "y": 1})
    assert len(recorder.stop_recording()) == 1


def test_empty_playback_is_noop():
    recorder = ActionRecorder(sleep=lambda seconds: pytest.fail("should not sleep"))
    recorder.playback([], 1.0, lambda action: pytest.fail("should not dispatch"))


def test_set_capacity_keeps_newest():
    recorder = ActionRecorder(capacity=5)
    recorder.start_recording()
    for i in range(4):
        recorder.record("keyboard_key", {"key": str(i)})

    recorder.set_capacity(2)
    recorder.record("keyboard_key", {"key": "4"})

    assert [a.parameters["key"] for a in recorder.stop_recording()] == ["3", "4"]
