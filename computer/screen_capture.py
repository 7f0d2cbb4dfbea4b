"""
截图能力

使用 pyautogui 截取屏幕，Pillow 编码为 PNG base64。
pyautogui 在首次使用时才导入，没有显示器的环境下也可以构造本类（传入 grabber）。
"""

import base64
import io
import logging
import os
import threading
from collections import deque
from datetime import datetime
from typing import Callable, Dict, List, Optional

from PIL import Image

from agent import events
from agent.errors import AlreadyCapturingError, CollaboratorError
from agent.models import ScreenshotData

logger = logging.getLogger(__name__)


def _pyautogui_grabber() -> Callable[[], Image.Image]:
    import pyautogui

    def grab() -> Image.Image:
        screenshot = pyautogui.screenshot()
        # 截图尺寸与屏幕尺寸可能不一致（HiDPI），调整为屏幕坐标系
        size = pyautogui.size()
        if screenshot.size != tuple(size):
            screenshot = screenshot.resize(tuple(size))
        return screenshot

    return grab


def encode_image(image: Image.Image, image_format: str = "png") -> str:
    """图片编码为 base64 字符串"""
    image_format = image_format.lower()
    buffer = io.BytesIO()
    if image_format == "png":
        image.save(buffer, format="PNG")
    elif image_format in ("jpeg", "jpg"):
        image.convert("RGB").save(buffer, format="JPEG", quality=90)
    else:
        raise ValueError(f"unsupported format: {image_format}")
    return base64.b64encode(buffer.getvalue()).decode("utf-8")


class ScreenCapture:
    """
    Parameters:
    - grabber: 返回 PIL.Image 的截图函数，默认使用 pyautogui
    - event_bus: 连续截图时发送 screenshotCaptured
    - max_history: 截图历史上限
    """

    def __init__(self, grabber: Optional[Callable[[], Image.Image]] = None,
                 event_bus: Optional[events.EventBus] = None, max_history: int = 100):
        self._grabber = grabber
        self.event_bus = event_bus
        self._history: deque = deque(maxlen=max_history)
        self._lock = threading.Lock()
        self._capture_thread: Optional[threading.Thread] = None
        self._capture_stop: Optional[threading.Event] = None

    def _grab(self) -> Image.Image:
        if self._grabber is None:
            self._grabber = _pyautogui_grabber()
        return self._grabber()

    def capture_screen(self, display_index: int = 0) -> ScreenshotData:
        """截取指定显示器（目前只支持主显示器 0）"""
        logger.debug(f"截取显示器 {display_index}")
        if display_index != 0:
            raise CollaboratorError(f"invalid display bounds for display {display_index}")

        try:
            image = self._grab()
            image_base64 = encode_image(image)
        except Exception as e:
            raise CollaboratorError(f"failed to capture screen: {e}") from e

        screenshot = ScreenshotData(
            width=image.width,
            height=image.height,
            image_base64=image_base64,
            display_id=display_index,
            timestamp=datetime.now(),
        )
        with self._lock:
            self._history.append(screenshot)

        logger.info(f"截图完成: {screenshot.width}x{screenshot.height}")
        return screenshot

    def save_screenshot(self, screenshot: ScreenshotData, directory: str = "data/screenshots",
                        filename: Optional[str] = None) -> str:
        """保存截图到目录，文件名默认按时间戳生成"""
        if not filename:
            filename = f"screenshot_{screenshot.timestamp.strftime('%Y%m%d_%H%M%S')}.png"

        try:
            os.makedirs(directory, exist_ok=True)
            path = os.path.join(directory, filename)
            with open(path, "wb") as f:
                f.write(base64.b64decode(screenshot.image_base64))
        except (OSError, ValueError) as e:
            raise CollaboratorError(f"failed to save screenshot: {e}") from e

        screenshot.file_path = path
        logger.info(f"截图已保存: {path}")
        return path

    def get_screenshot_history(self) -> List[ScreenshotData]:
        with self._lock:
            return list(self._history)

    def clear_screenshot_history(self):
        with self._lock:
            self._history.clear()

    def get_display_info(self) -> List[Dict]:
        image = self._grab()
        return [{
            "id": 0,
            "x": 0,
            "y": 0,
            "width": image.width,
            "height": image.height,
            "primary": True,
        }]

    # ==================== 连续截图 ====================

    @property
    def is_capturing(self) -> bool:
        return self._capture_thread is not None and self._capture_thread.is_alive()

    def start_continuous_capture(self, interval_ms: int = 500, display_index: int = 0):
        if self.is_capturing:
            raise AlreadyCapturingError("capture already in progress")

        stop = threading.Event()
        self._capture_stop = stop

        def loop():
            while not stop.wait(interval_ms / 1000.0):
                try:
                    screenshot = self.capture_screen(display_index)
                except CollaboratorError as e:
                    logger.error(f"连续截图失败: {e}")
                    continue
                if self.event_bus:
                    self.event_bus.emit(events.SCREENSHOT_CAPTURED, screenshot)

        self._capture_thread = threading.Thread(target=loop, daemon=True)
        self._capture_thread.start()
        logger.info("开始连续截图")

    def stop_continuous_capture(self, timeout: Optional[float] = None):
        if self._capture_stop is not None:
            self._capture_stop.set()
        if self._capture_thread is not None:
            self._capture_thread.join(timeout)
        self._capture_thread = None
        self._capture_stop = None
        logger.info("停止连续截图")
