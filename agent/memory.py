"""
Agent 记忆 (Agent Memory)

- 短期记忆：滚动的上下文快照历史（默认 100 条，先进先出）
- 长期记忆：LearningEvent 记录（默认 10000 条，先进先出）
- patterns / preferences：自由格式的键值对

写入都在同一把锁下完成，内存占用不随运行时长增长。
"""

import json
import logging
import os
import threading
from collections import deque
from typing import Any, Dict, List, Optional

from .models import ContextSnapshot, LearningEvent

logger = logging.getLogger(__name__)


class AgentMemory:

    def __init__(self, max_short_term: int = 100, max_long_term: int = 10000):
        self.max_short_term = max_short_term
        self.max_long_term = max_long_term
        self._context_history: deque = deque(maxlen=max_short_term)
        self._learning_events: deque = deque(maxlen=max_long_term)
        self.patterns: Dict[str, Any] = {}
        self.preferences: Dict[str, Any] = {}
        self._lock = threading.RLock()

    # ==================== 短期记忆 ====================

    def add_context(self, snapshot: ContextSnapshot):
        with self._lock:
            self._context_history.append(snapshot)

    def resize(self, max_short_term: int, max_long_term: int):
        """调整容量，超出部分丢弃最旧的记录"""
        with self._lock:
            self.max_short_term = max_short_term
            self.max_long_term = max_long_term
            self._context_history = deque(self._context_history, maxlen=max_short_term)
            self._learning_events = deque(self._learning_events, maxlen=max_long_term)

    def get_context_history(self) -> List[ContextSnapshot]:
        with self._lock:
            return list(self._context_history)

    def latest_context(self) -> Optional[ContextSnapshot]:
        with self._lock:
            return self._context_history[-1] if self._context_history else None

    def context_size(self) -> int:
        with self._lock:
            return len(self._context_history)

    # ==================== 长期记忆 ====================

    def record_learning_event(self, event: LearningEvent):
        with self._lock:
            self._learning_events.append(event)

    def get_learning_events(self, event_type: Optional[str] = None) -> List[LearningEvent]:
        with self._lock:
            events = list(self._learning_events)
        if event_type:
            return [e for e in events if e.event_type == event_type]
        return events

    def set_preference(self, key: str, value: Any):
        with self._lock:
            self.preferences[key] = value

    def set_pattern(self, key: str, value: Any):
        with self._lock:
            self.patterns[key] = value

    # ==================== 序列化 ====================

    def to_dict(self) -> Dict:
        with self._lock:
            return {
                "context_history": [c.to_dict() for c in self._context_history],
                "learning_events": [e.to_dict() for e in self._learning_events],
                "patterns": dict(self.patterns),
                "preferences": dict(self.preferences),
            }

    def save_to_file(self, path: str) -> bool:
        """保存为 JSON 文件，失败时记录警告并返回 False"""
        try:
            folder = os.path.dirname(path)
            if folder:
                os.makedirs(folder, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(self.to_dict(), f, ensure_ascii=False, indent=2)
            return True
        except (OSError, TypeError) as e:
            logger.warning(f"保存记忆文件失败: {e}")
            return False
