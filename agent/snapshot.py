"""
上下文快照 (Context Snapshotter)

依次调用：截图 -> 界面元素识别 -> 活动窗口 -> 鼠标位置。
只有截图失败是致命的，其余失败都降级为空值并记录警告。
"""

import logging
import platform
from datetime import datetime

from .errors import CollaboratorError
from .models import ContextSnapshot

logger = logging.getLogger(__name__)


class ContextSnapshotter:
    """
    Parameters:
    - screen: 提供 capture_screen(display_index)
    - detector: 提供 detect_ui_elements()，可为 None
    - automation: 提供 get_active_window() / get_mouse_position()，可为 None
    """

    def __init__(self, screen, detector=None, automation=None, display_index: int = 0):
        self.screen = screen
        self.detector = detector
        self.automation = automation
        self.display_index = display_index

    def capture(self) -> ContextSnapshot:
        try:
            screenshot = self.screen.capture_screen(self.display_index)
        except CollaboratorError:
            raise
        except Exception as e:
            raise CollaboratorError(f"failed to capture screen: {e}") from e

        ui_elements = []
        if self.detector is not None:
            try:
                ui_elements = self.detector.detect_ui_elements()
            except Exception as e:
                logger.warning(f"界面元素识别失败: {e}")

        active_window = None
        mouse_pos = (0, 0)
        if self.automation is not None:
            try:
                active_window = self.automation.get_active_window()
            except Exception as e:
                logger.warning(f"获取活动窗口失败: {e}")
            try:
                mouse_pos = tuple(self.automation.get_mouse_position())
            except Exception as e:
                logger.warning(f"获取鼠标位置失败: {e}")

        return ContextSnapshot(
            screenshot=screenshot,
            ui_elements=list(ui_elements),
            active_window=active_window,
            mouse_pos=mouse_pos,
            system_state={"os": platform.system()},
            timestamp=datetime.now(),
        )
