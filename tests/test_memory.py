"""
AgentMemory 测试
"""

import json

from agent import AgentMemory
from agent.models import ContextSnapshot, LearningEvent, ScreenshotData


def _snapshot() -> ContextSnapshot:
    return ContextSnapshot(screenshot=ScreenshotData(width=2, height=2, image_base64="eA=="))


def test_context_history_is_bounded():
    memory = AgentMemory(max_short_term=100)
    snapshots = [_snapshot() for _ in range(150)]
    for snapshot in snapshots:
        memory.add_context(snapshot)

    history = memory.get_context_history()
    assert len(history) == 100
    assert history[0] is snapshots[50]
    assert memory.latest_context() is snapshots[-1]


def test_latest_context_empty():
    assert AgentMemory().latest_context() is None


def test_learning_events_filter_and_bound():
    memory = AgentMemory(max_long_term=3)
    for i in range(4):
        memory.record_learning_event(LearningEvent(
            event_type="task_finished" if i % 2 else "feedback",
            context=None,
            action={"i": i},
            outcome="completed",
        ))

    assert [e.action["i"] for e in memory.get_learning_events()] == [1, 2, 3]
    assert [e.action["i"] for e in memory.get_learning_events("task_finished")] == [1, 3]


def test_save_to_file(tmp_path):
    memory = AgentMemory()
    memory.add_context(_snapshot())
    memory.set_preference("language", "zh")
    memory.set_pattern("login", {"steps": 3})

    path = tmp_path / "memory" / "agent.json"
    assert memory.save_to_file(str(path)) is True

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["preferences"] == {"language": "zh"}
    assert data["patterns"] == {"login": {"steps": 3}}
    assert len(data["context_history"]) == 1
    # 截图内容不写入文件
    assert "image_base64" not in data["context_history"][0]["screenshot"]


def test_save_to_file_failure_returns_false(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    assert AgentMemory().save_to_file(str(blocker / "agent.json")) is False


def test_resize_drops_oldest():
    memory = AgentMemory(max_short_term=5, max_long_term=5)
    snapshots = [_snapshot() for _ in range(4)]
    for snapshot in snapshots:
        memory.add_context(snapshot)

    memory.resize(2, 5)
    assert memory.get_context_history() == snapshots[2:]

    memory.add_context(_snapshot())
    assert memory.context_size() == 2
