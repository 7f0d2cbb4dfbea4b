"""
外部能力：截图、界面元素识别、鼠标键盘与窗口操作
"""

from .gui_action import GuiAction
from .screen_capture import ScreenCapture
from .ui_detection import UIDetector

__all__ = ["GuiAction", "ScreenCapture", "UIDetector"]
