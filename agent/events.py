"""
事件通知

发送即忘：监听者抛出的异常只记录日志，不影响发送方。
"""

import logging
import threading
from typing import Any, Callable, List

logger = logging.getLogger(__name__)

AGENT_STATUS_CHANGED = "agentStatusChanged"
TASK_CREATED = "taskCreated"
TASK_STATUS_CHANGED = "taskStatusChanged"
TASK_STEP_COMPLETED = "taskStepCompleted"
TASK_COMPLETED = "taskCompleted"
CONTEXT_UPDATE = "contextUpdate"
ACTION_PLAYBACK_PROGRESS = "actionPlaybackProgress"
SCREENSHOT_CAPTURED = "screenshotCaptured"

Listener = Callable[[str, Any], None]


class EventBus:
    """简单的观察者列表，emit 可以在任意线程调用"""

    def __init__(self):
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Listener:
        with self._lock:
            self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: Listener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def emit(self, name: str, payload: Any = None):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(name, payload)
            except Exception as e:
                logger.warning(f"事件监听器处理 {name} 失败: {e}")
