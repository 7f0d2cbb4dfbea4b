"""
Agent 异常定义

控制面错误（AlreadyActive / NotActive / AlreadyRecording）直接抛给调用方；
步骤执行错误只终止所属任务，写入 TaskResult.error。
"""

from typing import Optional


class AgentError(Exception):
    """所有 Agent 异常的基类"""

    kind = "AgentError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class AlreadyActiveError(AgentError):
    kind = "AlreadyActive"


class NotActiveError(AgentError):
    kind = "NotActive"


class AlreadyRecordingError(AgentError):
    kind = "AlreadyRecording"


class AlreadyCapturingError(AgentError):
    kind = "AlreadyCapturing"


class UnsupportedStepError(AgentError):
    kind = "UnsupportedStep"


class InvalidParametersError(AgentError):
    kind = "InvalidParameters"


class CollaboratorError(AgentError):
    """包装截图/识别/输入等外部能力的错误，原始异常保存在 __cause__"""

    kind = "CollaboratorFailure"


class PlanningError(AgentError):
    kind = "PlanningFailure"


class StepTimeoutError(AgentError):
    kind = "Timeout"


class PlaybackError(AgentError):
    """回放在第 index 个动作处失败"""

    kind = "PlaybackFailure"

    def __init__(self, index: int, cause: Optional[BaseException] = None):
        self.index = index
        self.cause = cause
        super().__init__(f"playback failed at action {index}: {cause}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["index"] = self.index
        return data
