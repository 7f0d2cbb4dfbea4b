"""
HTTP 控制接口测试

使用 FastAPI TestClient；Agent 的外部能力全部用假对象代替。
"""

import time
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from agent import Agent, ActionRecorder
from agent.models import OCRResult, UIElement
from computer import GuiAction, ScreenCapture
from config import AgentConfig
from conftest import FakeAutomation, FakePlanner, FakeScreen
from server import create_app

TOKEN = "test-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def agent():
    recorder = ActionRecorder(sleep=lambda seconds: None)
    return Agent(
        screen=FakeScreen(),
        automation=FakeAutomation(recorder=recorder),
        planner=FakePlanner(steps=[("wait", {"duration": 5})]),
        config=AgentConfig(monitor_interval=60.0),
    )


@pytest.fixture
def client(agent):
    with TestClient(create_app(agent, TOKEN)) as test_client:
        yield test_client
        test_client.post("/agent/stop", headers=AUTH)


def _wait_for_task(client, task_id, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        data = client.get(f"/tasks/{task_id}", headers=AUTH).json()
        if data["result"] is not None:
            return data
        time.sleep(0.01)
    raise AssertionError(f"task {task_id} did not finish")


def test_requires_access_token(client):
    assert client.get("/agent/status").status_code == 401
    assert client.get("/agent/status", headers={"Authorization": "Bearer wrong"}).status_code == 401


def test_access_token_in_query(client):
    response = client.get("/agent/status", params={"access_token": TOKEN})
    assert response.status_code == 200
    assert response.json()["active"] is False


def test_start_and_stop(client):
    assert client.post("/agent/start", headers=AUTH).status_code == 200
    assert client.get("/agent/status", headers=AUTH).json()["active"] is True

    response = client.post("/agent/start", headers=AUTH)
    assert response.status_code == 409
    assert response.json()["error"]["kind"] == "AlreadyActive"

    assert client.post("/agent/stop", headers=AUTH).status_code == 200
    assert client.post("/agent/stop", headers=AUTH).status_code == 200
    assert client.get("/agent/status", headers=AUTH).json()["active"] is False


def test_submit_task_while_inactive(client):
    response = client.post("/tasks", json={"description": "open editor"}, headers=AUTH)
    assert response.status_code == 409
    assert response.json()["error"]["kind"] == "NotActive"


def test_submit_and_query_task(client):
    client.post("/agent/start", headers=AUTH)

    response = client.post("/tasks", json={"description": "wait a bit", "priority": 2}, headers=AUTH)
    assert response.status_code == 200
    task = response.json()
    assert task["id"].startswith("task_")
    assert task["priority"] == 2

    finished = _wait_for_task(client, task["id"])
    assert finished["status"] == "completed"
    assert finished["result"]["success"] is True
    assert finished["steps"][0]["type"] == "wait"


def test_unknown_task(client):
    assert client.get("/tasks/task_0", headers=AUTH).status_code == 404


def test_config_roundtrip(client):
    config = client.get("/agent/config", headers=AUTH).json()
    assert config["monitor_interval"] == 60.0

    config["wait_ms"] = 250
    response = client.put("/agent/config", json=config, headers=AUTH)
    assert response.status_code == 200
    assert response.json()["wait_ms"] == 250


def test_recording_and_playback(client, agent):
    assert client.post("/recording/start", headers=AUTH).status_code == 200
    response = client.post("/recording/start", headers=AUTH)
    assert response.status_code == 409
    assert response.json()["error"]["kind"] == "AlreadyRecording"

    agent.automation.click_at(1, 2)
    actions = client.post("/recording/stop", headers=AUTH).json()["actions"]
    assert [a["type"] for a in actions] == ["mouse_click"]

    response = client.post("/recording/playback", json={"actions": actions, "speed": 2.0}, headers=AUTH)
    assert response.status_code == 200
    assert response.json()["played"] == 1
    assert agent.automation.calls[-1] == ("replay", "mouse_click")


def test_playback_failure_reports_index(client):
    actions = [{"type": "mouse_click"}, {"type": "explode"}]
    response = client.post("/recording/playback", json={"actions": actions}, headers=AUTH)
    assert response.status_code == 502
    error = response.json()["error"]
    assert error["kind"] == "PlaybackFailure"
    assert error["index"] == 1


def test_playback_rejects_malformed_action(client):
    response = client.post("/recording/playback", json={"actions": [{"parameters": {}}]}, headers=AUTH)
    assert response.status_code == 422


def test_screenshot(client):
    data = client.post("/screenshot", headers=AUTH).json()
    assert data["width"] == 4
    assert data["image_base64"] == "aW1hZ2U="


def test_partial_config_update_keeps_other_fields(client, agent):
    """只修改请求中出现的字段，其余字段保持当前值"""
    agent.update_config(replace(agent.get_config(), task_timeout=30.0))

    response = client.put("/agent/config", json={"wait_ms": 250}, headers=AUTH)
    assert response.status_code == 200
    config = response.json()
    assert config["wait_ms"] == 250
    assert config["monitor_interval"] == 60.0
    assert config["task_timeout"] == 30.0

    # 显式 null 只会清空可为空的字段
    config = client.put("/agent/config", json={"task_timeout": None, "wait_ms": None},
                        headers=AUTH).json()
    assert config["task_timeout"] is None
    assert config["wait_ms"] == 250


def test_config_update_applies_capacities(client, agent):
    body = {"context_history_size": 2, "max_task_history": 3, "recording_capacity": 4}
    assert client.put("/agent/config", json=body, headers=AUTH).status_code == 200
    assert agent.memory.max_short_term == 2
    assert agent.task_store.max_history == 3
    assert agent.recorder.capacity == 4


# ==================== 外部能力接口 ====================

def _grabber():
    return Image.new("RGB", (8, 6))


@pytest.fixture
def device_agent():
    backend = MagicMock()
    backend.getAllWindows.return_value = [MagicMock(title="Editor", left=0, top=0, width=10, height=10)]
    backend.getActiveWindow.return_value = MagicMock(title="Editor", left=0, top=0, width=10, height=10)
    detector = MagicMock()
    detector.perform_ocr.side_effect = lambda region: OCRResult(text="Save", confidence=0.9,
                                                                bounding_box=region)
    detector.detect_ui_elements.return_value = [UIElement(type="button", text="OK")]
    return Agent(
        screen=ScreenCapture(grabber=_grabber),
        automation=GuiAction(backend=backend, controlled_os="Linux", move_pause=0),
        planner=FakePlanner(),
        detector=detector,
        config=AgentConfig(monitor_interval=60.0),
    )


@pytest.fixture
def device_client(device_agent):
    with TestClient(create_app(device_agent, TOKEN)) as test_client:
        yield test_client
        test_client.post("/capture/stop", headers=AUTH)


def test_display_info_endpoint(device_client):
    displays = device_client.get("/displays", headers=AUTH).json()
    assert displays == [{"id": 0, "x": 0, "y": 0, "width": 8, "height": 6, "primary": True}]


def test_continuous_capture_endpoints(device_client, device_agent):
    assert device_client.post("/capture/start", json={"interval_ms": 10}, headers=AUTH).status_code == 200
    assert device_agent.screen.is_capturing

    response = device_client.post("/capture/start", json={"interval_ms": 10}, headers=AUTH)
    assert response.status_code == 409
    assert response.json()["error"]["kind"] == "AlreadyCapturing"

    assert device_client.post("/capture/stop", headers=AUTH).status_code == 200
    assert not device_agent.screen.is_capturing


def test_ui_endpoints(device_client):
    elements = device_client.get("/ui/elements", headers=AUTH).json()["elements"]
    assert [e["text"] for e in elements] == ["OK"]

    result = device_client.post("/ui/ocr", json={"x": 1, "y": 2, "width": 3, "height": 4},
                                headers=AUTH).json()
    assert result["text"] == "Save"
    assert result["bounding_box"] == {"x": 1, "y": 2, "width": 3, "height": 4}


def test_ocr_without_detector(client):
    response = client.post("/ui/ocr", json={"width": 3, "height": 4}, headers=AUTH)
    assert response.status_code == 502
    assert response.json()["error"]["kind"] == "CollaboratorFailure"


def test_window_endpoints(device_client, device_agent):
    windows = device_client.get("/windows", headers=AUTH).json()["windows"]
    assert [w["title"] for w in windows] == ["Editor"]
    assert device_client.get("/windows/active", headers=AUTH).json()["is_active"] is True

    response = device_client.post("/windows/focus", json={"identifier": "1", "identifier_type": "pid"},
                                  headers=AUTH)
    assert response.status_code == 502


def test_app_endpoints(device_client):
    with patch("computer.gui_action.subprocess.Popen") as popen:
        response = device_client.post("/apps/launch", json={"path": "/usr/bin/gedit"}, headers=AUTH)
    assert response.status_code == 200
    popen.assert_called_once_with(["/usr/bin/gedit"])

    with patch("computer.gui_action.subprocess.run") as run:
        response = device_client.post("/apps/close", json={"identifier": "gedit"}, headers=AUTH)
    assert response.status_code == 200
    run.assert_called_once_with(["pkill", "-f", "gedit"], check=True, capture_output=True)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
