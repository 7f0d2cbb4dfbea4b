"""
数据模型

Task / TaskStep / TaskResult / ContextSnapshot / Action / LearningEvent，
以及外部能力返回的 ScreenshotData / UIElement / WindowInfo。
"""

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional


class TaskStatus:
    """任务 / 步骤状态"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"

    TERMINAL = (COMPLETED, FAILED, PAUSED)


def to_jsonable(value: Any) -> Any:
    """把模型对象递归转换为可 JSON 序列化的结构"""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return datetime.now()


# ==================== 外部能力数据 ====================

@dataclass
class BoundingBox:
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0


@dataclass
class UIElement:
    """检测到的界面元素"""
    type: str
    bounding_box: BoundingBox = field(default_factory=BoundingBox)
    text: str = ""
    attributes: Dict[str, str] = field(default_factory=dict)
    clickable: bool = False
    visible: bool = True

    def to_dict(self) -> Dict:
        return {
            "type": self.type,
            "text": self.text,
            "bounding_box": to_jsonable(self.bounding_box),
            "attributes": self.attributes,
            "clickable": self.clickable,
            "visible": self.visible,
        }


@dataclass
class OCRWord:
    text: str
    confidence: float
    bounding_box: BoundingBox


@dataclass
class OCRResult:
    text: str
    confidence: float
    bounding_box: BoundingBox
    words: List[OCRWord] = field(default_factory=list)


@dataclass
class ScreenshotData:
    """一次截图：尺寸 + base64 编码的 PNG"""
    width: int
    height: int
    image_base64: str
    display_id: int = 0
    timestamp: datetime = field(default_factory=datetime.now)
    file_path: str = ""

    def to_dict(self, include_image: bool = True) -> Dict:
        data = {
            "timestamp": self.timestamp.isoformat(),
            "width": self.width,
            "height": self.height,
            "display_id": self.display_id,
            "file_path": self.file_path,
        }
        if include_image:
            data["image_base64"] = self.image_base64
        return data


@dataclass
class WindowInfo:
    title: str = ""
    pid: int = 0
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0
    is_active: bool = False
    process_name: str = "unknown"


# ==================== 录制动作 ====================

@dataclass
class Action:
    """一次被录制下来的自动化原语调用"""
    type: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    description: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict:
        return {
            "type": self.type,
            "timestamp": self.timestamp.isoformat(),
            "parameters": to_jsonable(self.parameters),
            "description": self.description,
        }

    @staticmethod
    def from_dict(data: Dict) -> "Action":
        """从字典恢复"""
        return Action(
            type=data["type"],
            parameters=dict(data.get("parameters") or {}),
            description=data.get("description", ""),
            timestamp=_parse_time(data.get("timestamp")),
        )


# ==================== 上下文 ====================

@dataclass
class ContextSnapshot:
    """某一时刻的屏幕 / 窗口 / 鼠标状态"""
    screenshot: ScreenshotData
    ui_elements: List[UIElement] = field(default_factory=list)
    active_window: Optional[WindowInfo] = None
    mouse_pos: tuple = (0, 0)
    system_state: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "screenshot": self.screenshot.to_dict(include_image=False),
            "ui_elements": [e.to_dict() for e in self.ui_elements],
            "active_window": to_jsonable(self.active_window),
            "mouse_pos": list(self.mouse_pos),
            "system_state": to_jsonable(self.system_state),
        }


@dataclass
class LearningEvent:
    event_type: str
    context: Optional[ContextSnapshot]
    action: Any
    outcome: str
    feedback: str = ""
    confidence: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "context": self.context.to_dict() if self.context else None,
            "action": to_jsonable(self.action),
            "outcome": self.outcome,
            "feedback": self.feedback,
            "confidence": self.confidence,
            "metadata": to_jsonable(self.metadata),
        }


# ==================== 任务 ====================

@dataclass
class PlanStep:
    action: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Plan:
    """规划能力返回的有序步骤"""
    steps: List[PlanStep] = field(default_factory=list)
    name: str = ""
    analysis: str = ""


@dataclass
class TaskStep:
    id: str
    type: str
    description: str = ""
    status: str = TaskStatus.PENDING
    parameters: Dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: str = ""
    duration: float = 0.0  # 秒，仅在 completed/failed 后有意义
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000.0

    def to_dict(self) -> Dict:
        result = self.result
        if isinstance(result, ScreenshotData):
            result = result.to_dict(include_image=False)
        return {
            "id": self.id,
            "type": self.type,
            "description": self.description,
            "status": self.status,
            "parameters": to_jsonable(self.parameters),
            "result": to_jsonable(result),
            "error": self.error,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class TaskResult:
    """任务终止时生成，之后不再修改"""
    success: bool
    data: Any = None
    error: str = ""
    screenshots: tuple = ()
    actions: tuple = ()
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "data": to_jsonable(self.data),
            "error": self.error,
            "screenshots": [s.to_dict(include_image=False) for s in self.screenshots],
            "actions": [a.to_dict() for a in self.actions],
            "metadata": to_jsonable(self.metadata),
        }


@dataclass
class Task:
    id: str
    description: str
    type: str = "user_request"
    status: str = TaskStatus.PENDING
    priority: int = 0
    steps: List[TaskStep] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)
    result: Optional[TaskResult] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def set_status(self, status: str):
        self.status = status
        self.updated_at = datetime.now()

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "type": self.type,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "steps": [s.to_dict() for s in self.steps],
            "context": to_jsonable(self.context),
            "result": self.result.to_dict() if self.result else None,
            "metadata": to_jsonable(self.metadata),
        }
