"""
Agent 核心模块

任务编排与动作回放引擎，包含：
- Agent: 主流程编排（激活状态、任务生命周期、后台上下文采集）
- TaskStore: 任务队列与历史
- ActionRecorder: 动作录制与按原始节奏回放
- ContextSnapshotter: 屏幕 / 窗口 / 鼠标状态快照
- AgentMemory: 上下文历史与学习记录
- Planner: 规划器（模型生成分步规划）
"""

from .agent import Agent
from .events import EventBus
from .memory import AgentMemory
from .planner import Planner
from .recorder import ActionRecorder
from .snapshot import ContextSnapshotter
from .task_store import TaskStore

__all__ = [
    "Agent",
    "EventBus",
    "AgentMemory",
    "Planner",
    "ActionRecorder",
    "ContextSnapshotter",
    "TaskStore",
]
