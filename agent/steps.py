"""
步骤参数解码

规划结果里的 parameters 是无类型的字典，这里在派发前把它转换成
每种动作各自的参数类型；类型不符直接抛 InvalidParametersError。
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Union

from .errors import InvalidParametersError, UnsupportedStepError


@dataclass(frozen=True)
class CaptureStep:
    display: int = 0


@dataclass(frozen=True)
class ClickStep:
    x: int
    y: int
    button: str = "left"


@dataclass(frozen=True)
class TypeStep:
    text: str
    delay: int = 50


@dataclass(frozen=True)
class KeyStep:
    key: str
    modifiers: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class WaitStep:
    duration: int = 1000  # 毫秒


@dataclass(frozen=True)
class AnalyzeStep:
    pass


@dataclass(frozen=True)
class ScrollStep:
    x: int
    y: int
    direction: str = "down"
    amount: int = 3


@dataclass(frozen=True)
class DragStep:
    from_x: int
    from_y: int
    to_x: int
    to_y: int


@dataclass(frozen=True)
class LaunchStep:
    path: str
    args: List[str] = field(default_factory=list)


StepParams = Union[
    CaptureStep, ClickStep, TypeStep, KeyStep, WaitStep,
    AnalyzeStep, ScrollStep, DragStep, LaunchStep,
]

_MISSING = object()


def _get(params: Dict[str, Any], key: str, default: Any):
    value = params.get(key, _MISSING)
    if value is _MISSING or value is None:
        if default is _MISSING:
            raise InvalidParametersError(f"missing parameter '{key}'")
        return default
    return value


def _int(params: Dict[str, Any], key: str, default: Any = _MISSING) -> int:
    value = _get(params, key, default)
    # bool 是 int 的子类，需要单独排除
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidParametersError(
            f"parameter '{key}' must be a number, got {type(value).__name__}"
        )
    return int(value)


def _str(params: Dict[str, Any], key: str, default: Any = _MISSING) -> str:
    value = _get(params, key, default)
    if not isinstance(value, str):
        raise InvalidParametersError(
            f"parameter '{key}' must be a string, got {type(value).__name__}"
        )
    return value


def _str_list(params: Dict[str, Any], key: str) -> List[str]:
    value = _get(params, key, [])
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise InvalidParametersError(f"parameter '{key}' must be a list of strings")
    return list(value)


_DECODERS: Dict[str, Callable[[Dict[str, Any], Dict[str, int]], StepParams]] = {
    "capture": lambda p, d: CaptureStep(display=_int(p, "display", 0)),
    "click": lambda p, d: ClickStep(
        x=_int(p, "x"), y=_int(p, "y"), button=_str(p, "button", "left")
    ),
    "type": lambda p, d: TypeStep(
        text=_str(p, "text"), delay=_int(p, "delay", d["type_delay_ms"])
    ),
    "key": lambda p, d: KeyStep(key=_str(p, "key"), modifiers=_str_list(p, "modifiers")),
    "wait": lambda p, d: WaitStep(duration=_int(p, "duration", d["wait_ms"])),
    "analyze": lambda p, d: AnalyzeStep(),
    "scroll": lambda p, d: ScrollStep(
        x=_int(p, "x"), y=_int(p, "y"),
        direction=_str(p, "direction", "down"), amount=_int(p, "amount", 3),
    ),
    "drag": lambda p, d: DragStep(
        from_x=_int(p, "from_x"), from_y=_int(p, "from_y"),
        to_x=_int(p, "to_x"), to_y=_int(p, "to_y"),
    ),
    "launch": lambda p, d: LaunchStep(path=_str(p, "path"), args=_str_list(p, "args")),
}

SUPPORTED_STEPS = tuple(_DECODERS)


def decode_step(
    action: str,
    parameters: Any,
    type_delay_ms: int = 50,
    wait_ms: int = 1000,
) -> StepParams:
    """
    把 (action, parameters) 解码为强类型参数

    Raises:
        UnsupportedStepError: 未知动作类型
        InvalidParametersError: 参数缺失或类型不符
    """
    decoder = _DECODERS.get(action)
    if decoder is None:
        raise UnsupportedStepError(f"unknown step type: {action}")
    if parameters is None:
        parameters = {}
    if not isinstance(parameters, dict):
        raise InvalidParametersError(f"parameters of '{action}' must be a mapping")
    defaults = {"type_delay_ms": type_delay_ms, "wait_ms": wait_ms}
    return decoder(parameters, defaults)
