"""
界面元素识别

把当前截图发给 grounding 模型（OpenAI 兼容接口），要求返回 JSON 格式的元素列表。
"""

import json
import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI

from agent.errors import CollaboratorError
from agent.models import BoundingBox, OCRResult, OCRWord, UIElement

logger = logging.getLogger(__name__)

DETECT_PROMPT = """Detect the interactive UI elements in this screenshot.
Respond with JSON only:
{"elements": [{"type": "button|text_input|link|menu|icon|text", "text": "...",
  "bounding_box": {"x": 0, "y": 0, "width": 0, "height": 0},
  "clickable": true, "visible": true}]}
Coordinates are screen pixels."""

OCR_PROMPT = """Read all text inside the region x={x}, y={y}, width={width}, height={height}.
Respond with JSON only:
{{"text": "...", "confidence": 0.0, "words": [{{"text": "...", "confidence": 0.0,
  "bounding_box": {{"x": 0, "y": 0, "width": 0, "height": 0}}}}]}}"""


def _strip_json(content: str) -> Any:
    json_str = content.replace("```json", "").replace("```", "").strip()
    return json.loads(json_str)


def _box(data: Optional[Dict]) -> BoundingBox:
    data = data or {}
    return BoundingBox(
        x=int(data.get("x", 0)),
        y=int(data.get("y", 0)),
        width=int(data.get("width", 0)),
        height=int(data.get("height", 0)),
    )


class UIDetector:
    """
    Args:
        screen: 提供 capture_screen(display_index) 的截图能力
        api_key / base_url / model: grounding 模型配置
        client: 可选，直接传入 OpenAI 兼容的客户端
    """

    def __init__(self, screen, api_key: str = "", base_url: str = "", model: str = "",
                 client: Optional[Any] = None):
        self.screen = screen
        self.client = client or OpenAI(api_key=api_key, base_url=base_url or None)
        self.model = model

    def _ask(self, prompt: str) -> str:
        screenshot = self.screen.capture_screen(0)
        messages = [{
            "role": "user",
            "content": [
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/png;base64,{screenshot.image_base64}"},
                },
                {"type": "text", "text": prompt},
            ],
        }]
        try:
            completion = self.client.chat.completions.create(model=self.model, messages=messages)
        except Exception as e:
            raise CollaboratorError(f"grounding model call failed: {e}") from e
        return completion.choices[0].message.content or ""

    def detect_ui_elements(self) -> List[UIElement]:
        output_text = self._ask(DETECT_PROMPT)
        try:
            data = _strip_json(output_text)
            items = data["elements"] if isinstance(data, dict) else data
            elements = [
                UIElement(
                    type=str(item.get("type", "unknown")),
                    text=str(item.get("text") or ""),
                    bounding_box=_box(item.get("bounding_box")),
                    attributes={str(k): str(v) for k, v in (item.get("attributes") or {}).items()},
                    clickable=bool(item.get("clickable", False)),
                    visible=bool(item.get("visible", True)),
                )
                for item in items
            ]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise CollaboratorError(f"invalid UI detection output: {e}") from e

        logger.info(f"识别到 {len(elements)} 个界面元素")
        return elements

    def perform_ocr(self, region: BoundingBox) -> OCRResult:
        output_text = self._ask(OCR_PROMPT.format(
            x=region.x, y=region.y, width=region.width, height=region.height
        ))
        try:
            data = _strip_json(output_text)
            result = OCRResult(
                text=str(data.get("text", "")),
                confidence=float(data.get("confidence", 0.0)),
                bounding_box=region,
                words=[
                    OCRWord(
                        text=str(w.get("text", "")),
                        confidence=float(w.get("confidence", 0.0)),
                        bounding_box=_box(w.get("bounding_box")),
                    )
                    for w in data.get("words", [])
                ],
            )
        except (ValueError, TypeError, AttributeError) as e:
            raise CollaboratorError(f"invalid OCR output: {e}") from e

        logger.info(f"OCR 完成，置信度 {result.confidence:.2f}")
        return result
