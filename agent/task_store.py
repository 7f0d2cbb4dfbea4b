"""
任务存储 (Task Store)

- tasks: id -> Task 索引
- queue: 未结束的任务，按提交顺序排列（priority 只作为元数据，不参与排序）
- history: 已结束的任务，超过 max_history 时丢弃最旧的一条

queue 和 history 在同一把锁下修改，任何读者都不会看到一个任务
同时出现在两边或两边都没有。
"""

import logging
import threading
from typing import Dict, List, Optional

from .models import Task

logger = logging.getLogger(__name__)


class TaskStore:

    def __init__(self, max_history: int = 1000):
        self.max_history = max_history
        self._tasks: Dict[str, Task] = {}
        self._queue: List[Task] = []
        self._history: List[Task] = []
        self._lock = threading.RLock()

    def add(self, task: Task):
        """登记任务并追加到队列末尾"""
        with self._lock:
            if task.id in self._tasks:
                raise ValueError(f"duplicate task id: {task.id}")
            self._tasks[task.id] = task
            self._queue.append(task)

    def get(self, task_id: str) -> Optional[Task]:
        with self._lock:
            return self._tasks.get(task_id)

    def move_to_history(self, task: Task):
        """从队列移除第一个同 id 的任务，并追加到历史"""
        with self._lock:
            for i, queued in enumerate(self._queue):
                if queued.id == task.id:
                    del self._queue[i]
                    break
            else:
                logger.warning(f"任务 {task.id} 不在队列中")
                return

            self._history.append(task)
            self._trim_history()

    def set_max_history(self, max_history: int):
        with self._lock:
            self.max_history = max_history
            self._trim_history()

    def _trim_history(self):
        while len(self._history) > self.max_history:
            evicted = self._history.pop(0)
            self._tasks.pop(evicted.id, None)

    def queue(self) -> List[Task]:
        with self._lock:
            return list(self._queue)

    def history(self) -> List[Task]:
        with self._lock:
            return list(self._history)

    def snapshot(self) -> Dict[str, List[Task]]:
        """同一把锁下同时读取 queue 和 history"""
        with self._lock:
            return {"queue": list(self._queue), "history": list(self._history)}

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
