"""
测试公共组件

用内存中的假对象代替截图 / 输入 / 规划能力，测试不需要显示器和模型服务。
"""

import asyncio
import os
import sys
import time

import pytest

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from agent import Agent, EventBus
from agent.errors import CollaboratorError
from agent.models import Plan, PlanStep, ScreenshotData, WindowInfo
from config import AgentConfig


class FakeScreen:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0
        self.saved = []

    def capture_screen(self, display_index: int = 0) -> ScreenshotData:
        self.calls += 1
        if self.fail:
            raise CollaboratorError("no display attached")
        if display_index != 0:
            raise CollaboratorError(f"invalid display bounds for display {display_index}")
        return ScreenshotData(width=4, height=3, image_base64="aW1hZ2U=", display_id=display_index)

    def save_screenshot(self, screenshot, directory):
        path = os.path.join(directory, f"shot_{len(self.saved)}.png")
        self.saved.append(path)
        screenshot.file_path = path
        return path


class FakeAutomation:
    def __init__(self, recorder=None):
        self.recorder = recorder
        self.calls = []

    def _record(self, action_type, parameters):
        if self.recorder is not None:
            self.recorder.record(action_type, parameters, action_type)

    def click_at(self, x, y, button="left"):
        self.calls.append(("click", x, y, button))
        self._record("mouse_click", {"x": x, "y": y, "button": button})

    def type_text(self, text, delay=50):
        self.calls.append(("type", text, delay))
        self._record("keyboard_type", {"text": text, "delay": delay})

    def press_key(self, key, modifiers=None):
        self.calls.append(("key", key, list(modifiers or [])))
        self._record("keyboard_key", {"key": key, "modifiers": list(modifiers or [])})

    def scroll(self, x, y, direction, amount):
        self.calls.append(("scroll", x, y, direction, amount))

    def drag_to(self, from_x, from_y, to_x, to_y):
        self.calls.append(("drag", from_x, from_y, to_x, to_y))

    def launch_application(self, path, args=None):
        self.calls.append(("launch", path, list(args or [])))

    def get_active_window(self):
        return WindowInfo(title="Editor", is_active=True)

    def get_mouse_position(self):
        return (10, 20)

    def execute_action(self, action):
        if action.type == "explode":
            raise RuntimeError("boom")
        self.calls.append(("replay", action.type))
        self._record(action.type, action.parameters)


class FakePlanner:
    """每次请求都返回同一组步骤 [(action, parameters), ...]"""

    def __init__(self, steps=None, error=None):
        self.steps = list(steps or [])
        self.error = error
        self.requests = []

    def request_plan(self, task, screenshot, ui_elements):
        self.requests.append(task.id)
        if self.error is not None:
            raise self.error
        return Plan(
            steps=[PlanStep(action=a, description=a, parameters=p) for a, p in self.steps],
            name=task.description,
            analysis="screen analysed",
        )


class FakeDetector:
    def __init__(self, elements=None, fail=False):
        self.elements = list(elements or [])
        self.fail = fail

    def detect_ui_elements(self):
        if self.fail:
            raise CollaboratorError("detector offline")
        return list(self.elements)


async def wait_until_done(task, timeout: float = 3.0):
    """等待任务写入结果（进入终态）"""
    deadline = time.monotonic() + timeout
    while task.result is None:
        if time.monotonic() > deadline:
            raise AssertionError(f"task {task.id} did not finish, status={task.status}")
        await asyncio.sleep(0.005)
    return task


@pytest.fixture
def event_log():
    """记录 EventBus 上发出的所有事件"""
    bus = EventBus()
    log = []
    bus.subscribe(lambda name, payload: log.append((name, payload)))
    return bus, log


@pytest.fixture
def make_agent(event_log):
    bus, _ = event_log

    def factory(steps=None, planner=None, screen=None, automation=None, detector=None, **config):
        config.setdefault("monitor_interval", 60.0)
        return Agent(
            screen=screen or FakeScreen(),
            automation=automation or FakeAutomation(),
            planner=planner or FakePlanner(steps),
            detector=detector,
            config=AgentConfig(**config),
            event_bus=bus,
        )

    return factory
