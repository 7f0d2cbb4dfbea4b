"""
动作录制与回放 (Action Recorder)

状态机: idle -> recording -> idle
回放独立于录制状态，回放过程中执行的原语不会被再次录制。
"""

import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from . import events
from .errors import AlreadyRecordingError, PlaybackError
from .models import Action

logger = logging.getLogger(__name__)


class ActionRecorder:
    """
    Parameters:
    - capacity: 缓冲区上限，超出时丢弃最旧的动作
    - event_bus: 用于发送回放进度
    - sleep: 回放间隔使用的 sleep 函数（测试可替换）
    """

    def __init__(
        self,
        capacity: int = 1000,
        event_bus: Optional[events.EventBus] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.capacity = capacity
        self.event_bus = event_bus
        self._sleep = sleep
        self._recording = False
        self._buffer: deque = deque(maxlen=capacity)
        self._lock = threading.RLock()
        self._local = threading.local()

    @property
    def is_recording(self) -> bool:
        with self._lock:
            return self._recording

    def start_recording(self):
        with self._lock:
            if self._recording:
                raise AlreadyRecordingError("recording already in progress")
            self._recording = True
            self._buffer.clear()
        logger.info("开始录制动作")

    def stop_recording(self) -> List[Action]:
        """停止录制，返回缓冲区副本"""
        with self._lock:
            self._recording = False
            actions = list(self._buffer)
        logger.info(f"停止录制，共 {len(actions)} 个动作")
        return actions

    def set_capacity(self, capacity: int):
        """调整缓冲区上限，超出部分丢弃最旧的动作"""
        with self._lock:
            self.capacity = capacity
            self._buffer = deque(self._buffer, maxlen=capacity)

    def record(self, action_type: str, parameters: Dict[str, Any], description: str = ""):
        """由自动化原语调用；未录制或处于回放中时忽略"""
        if getattr(self._local, "playing", False):
            return
        with self._lock:
            if not self._recording:
                return
            self._buffer.append(Action(
                type=action_type,
                parameters=dict(parameters),
                description=description,
                timestamp=datetime.now(),
            ))

    def actions(self) -> List[Action]:
        with self._lock:
            return list(self._buffer)

    def actions_since(self, since: datetime) -> List[Action]:
        with self._lock:
            return [a for a in self._buffer if a.timestamp >= since]

    @contextmanager
    def _playing(self):
        previous = getattr(self._local, "playing", False)
        self._local.playing = True
        try:
            yield
        finally:
            self._local.playing = previous

    def playback(
        self,
        actions: Sequence[Action],
        speed: float,
        dispatch: Callable[[Action], Any],
    ):
        """
        按原始相对时间间隔回放动作

        第 i 个动作（i > 0）之前等待 (t[i] - t[i-1]) / speed 秒；
        任何一个动作失败即停止并抛出 PlaybackError(index)，已执行的动作不会撤销。
        """
        if speed <= 0:
            speed = 1.0
        total = len(actions)
        logger.info(f"开始回放 {total} 个动作，速度 {speed:.2f}x")

        for i, action in enumerate(actions):
            if i > 0:
                gap = (action.timestamp - actions[i - 1].timestamp).total_seconds()
                if gap > 0:
                    self._sleep(gap / speed)

            try:
                with self._playing():
                    dispatch(action)
            except Exception as e:
                logger.error(f"回放第 {i} 个动作失败: {e}")
                raise PlaybackError(i, e) from e

            if self.event_bus:
                self.event_bus.emit(events.ACTION_PLAYBACK_PROGRESS, {
                    "current": i + 1,
                    "total": total,
                    "action": action.to_dict(),
                })

        logger.info("动作回放完成")
