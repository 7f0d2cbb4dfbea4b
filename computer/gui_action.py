"""
鼠标 / 键盘 / 窗口 / 进程操作

所有原语都是阻塞调用，作用于整机共享的输入状态；
录制开启时，每次成功调用都会写入 ActionRecorder。
"""

import logging
import platform
import subprocess
import time
from typing import Any, List, Optional, Tuple

from agent.errors import CollaboratorError, UnsupportedStepError
from agent.models import Action, WindowInfo
from agent.recorder import ActionRecorder
from agent.steps import (
    ClickStep,
    DragStep,
    KeyStep,
    LaunchStep,
    ScrollStep,
    TypeStep,
    decode_step,
)

logger = logging.getLogger(__name__)

# 录制动作类型 -> 步骤类型，回放时复用步骤参数解码
_RECORDED_ACTIONS = {
    "mouse_click": "click",
    "mouse_drag": "drag",
    "mouse_scroll": "scroll",
    "keyboard_type": "type",
    "keyboard_key": "key",
    "app_launch": "launch",
}


class GuiAction:
    """
    Parameters:
    - recorder: 动作录制器，可为 None
    - backend: pyautogui 兼容的对象，默认在首次使用时导入 pyautogui
    - clipboard: pyperclip 兼容的对象，用于输入非 ASCII 文本
    """

    def __init__(self, recorder: Optional[ActionRecorder] = None, backend: Any = None,
                 clipboard: Any = None, controlled_os: Optional[str] = None,
                 move_pause: float = 0.05):
        self.recorder = recorder
        self._gui = backend
        self._clipboard = clipboard
        self.controlled_os = controlled_os or platform.system()
        self.move_pause = move_pause

    @property
    def gui(self):
        if self._gui is None:
            import pyautogui
            self._gui = pyautogui
        return self._gui

    @property
    def clipboard(self):
        if self._clipboard is None:
            import pyperclip
            self._clipboard = pyperclip
        return self._clipboard

    def _record(self, action_type: str, parameters: dict, description: str):
        if self.recorder is not None:
            self.recorder.record(action_type, parameters, description)

    def _move(self, x: int, y: int):
        self.gui.moveTo(x, y)
        if self.move_pause:
            time.sleep(self.move_pause)

    # ==================== 鼠标 ====================

    def click_at(self, x: int, y: int, button: str = "left"):
        logger.debug(f"点击 ({x}, {y}) 按键 {button}")
        self._move(x, y)

        name = (button or "left").lower()
        if name == "left":
            self.gui.click(button="left")
        elif name == "right":
            self.gui.click(button="right")
        elif name == "middle":
            self.gui.click(button="middle")
        elif name == "double":
            self.gui.doubleClick()
        else:
            raise CollaboratorError(f"unsupported mouse button: {button}")

        self._record("mouse_click", {"x": x, "y": y, "button": name},
                     f"Click {name} at ({x}, {y})")

    def drag_to(self, from_x: int, from_y: int, to_x: int, to_y: int):
        logger.debug(f"拖拽 ({from_x}, {from_y}) -> ({to_x}, {to_y})")
        self._move(from_x, from_y)
        self.gui.mouseDown(button="left")
        self.gui.moveTo(to_x, to_y, duration=0.1)
        self.gui.mouseUp(button="left")

        self._record("mouse_drag",
                     {"from_x": from_x, "from_y": from_y, "to_x": to_x, "to_y": to_y},
                     f"Drag from ({from_x}, {from_y}) to ({to_x}, {to_y})")

    def scroll(self, x: int, y: int, direction: str, amount: int):
        logger.debug(f"在 ({x}, {y}) 向 {direction} 滚动 {amount}")
        name = direction.lower()
        if name not in ("up", "down", "left", "right"):
            raise CollaboratorError(f"unsupported scroll direction: {direction}")

        self._move(x, y)
        if name == "up":
            self.gui.scroll(amount)
        elif name == "down":
            self.gui.scroll(-amount)
        elif name == "left":
            self.gui.hscroll(-amount)
        else:
            self.gui.hscroll(amount)

        self._record("mouse_scroll",
                     {"x": x, "y": y, "direction": name, "amount": amount},
                     f"Scroll {name} at ({x}, {y})")

    def get_mouse_position(self) -> Tuple[int, int]:
        position = self.gui.position()
        return int(position[0]), int(position[1])

    # ==================== 键盘 ====================

    def type_text(self, text: str, delay: int = 50):
        if delay <= 0:
            delay = 50

        if text.isascii():
            self.gui.write(text, interval=delay / 1000.0)
        else:
            # pyautogui 无法直接输入非 ASCII 字符，走剪贴板粘贴
            self.clipboard.copy(text)
            time.sleep(0.1)
            paste_key = "command" if self.controlled_os == "Darwin" else "ctrl"
            self.gui.hotkey(paste_key, "v")

        self._record("keyboard_type", {"text": text, "delay": delay}, f"Type: {text}")

    def _normalize_modifier(self, modifier: str) -> Optional[str]:
        name = modifier.lower()
        if name in ("ctrl", "control"):
            return "ctrl"
        if name in ("shift", "alt"):
            return name
        if name in ("meta", "cmd", "command", "super", "win"):
            return "command" if self.controlled_os == "Darwin" else "win"
        return None

    def press_key(self, key: str, modifiers: Optional[List[str]] = None):
        modifiers = list(modifiers or [])
        combo = [m for m in (self._normalize_modifier(m) for m in modifiers) if m]

        if combo:
            self.gui.hotkey(*combo, key)
        else:
            self.gui.press(key)

        self._record("keyboard_key", {"key": key, "modifiers": modifiers},
                     f"Press: {'+'.join(modifiers + [key])}")

    # ==================== 窗口 ====================

    @staticmethod
    def _window_info(window, is_active: bool = False) -> WindowInfo:
        return WindowInfo(
            title=getattr(window, "title", ""),
            x=int(getattr(window, "left", 0)),
            y=int(getattr(window, "top", 0)),
            width=int(getattr(window, "width", 0)),
            height=int(getattr(window, "height", 0)),
            is_active=is_active,
        )

    def get_active_window(self) -> WindowInfo:
        try:
            window = self.gui.getActiveWindow()
        except Exception as e:
            raise CollaboratorError(f"failed to query active window: {e}") from e
        if window is None:
            raise CollaboratorError("no active window")
        return self._window_info(window, is_active=True)

    def get_all_windows(self) -> List[WindowInfo]:
        try:
            windows = self.gui.getAllWindows()
        except Exception as e:
            raise CollaboratorError(f"failed to enumerate windows: {e}") from e
        return [self._window_info(w) for w in windows]

    def focus_window(self, identifier: str, identifier_type: str = "title"):
        logger.debug(f"聚焦窗口: {identifier} ({identifier_type})")
        kind = identifier_type.lower()
        if kind == "pid":
            raise CollaboratorError("focusing by PID not implemented yet")
        if kind != "title":
            raise CollaboratorError(f"unsupported identifier type: {identifier_type}")

        try:
            windows = self.gui.getWindowsWithTitle(identifier)
        except Exception as e:
            raise CollaboratorError(f"failed to find window: {e}") from e
        if not windows:
            raise CollaboratorError(f"window not found: {identifier}")
        windows[0].activate()

    # ==================== 应用 ====================

    def launch_application(self, path: str, args: Optional[List[str]] = None):
        args = list(args or [])
        logger.debug(f"启动应用: {path} {args}")
        try:
            subprocess.Popen([path, *args])
        except OSError as e:
            raise CollaboratorError(f"failed to launch application: {e}") from e

        self._record("app_launch", {"path": path, "args": args}, f"Launch: {path}")
        logger.info(f"应用已启动: {path}")

    def close_application(self, identifier: str, identifier_type: str = "name"):
        logger.debug(f"关闭应用: {identifier} ({identifier_type})")
        by_name = identifier_type == "name"

        if self.controlled_os == "Windows":
            command = ["taskkill", "/F", "/IM" if by_name else "/PID", identifier]
        elif self.controlled_os in ("Darwin", "Linux"):
            command = ["pkill", "-f", identifier] if by_name else ["kill", "-9", identifier]
        else:
            raise CollaboratorError(f"unsupported operating system: {self.controlled_os}")

        try:
            subprocess.run(command, check=True, capture_output=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise CollaboratorError(f"failed to close application: {e}") from e

    # ==================== 回放 ====================

    def execute_action(self, action: Action):
        """执行一个录制下来的动作，供回放使用"""
        kind = _RECORDED_ACTIONS.get(action.type)
        if kind is None:
            raise UnsupportedStepError(f"unknown action type: {action.type}")

        params = decode_step(kind, action.parameters)
        if isinstance(params, ClickStep):
            self.click_at(params.x, params.y, params.button)
        elif isinstance(params, DragStep):
            self.drag_to(params.from_x, params.from_y, params.to_x, params.to_y)
        elif isinstance(params, ScrollStep):
            self.scroll(params.x, params.y, params.direction, params.amount)
        elif isinstance(params, TypeStep):
            self.type_text(params.text, params.delay)
        elif isinstance(params, KeyStep):
            self.press_key(params.key, list(params.modifiers))
        elif isinstance(params, LaunchStep):
            self.launch_application(params.path, list(params.args))
