"""
规划器 (Planner)

根据任务描述、当前截图和识别到的界面元素，请求模型给出分步规划。
Agent 只关心返回的 Plan 结构，不关心规划是如何产生的。
"""

import json
import logging
import platform
from typing import Any, List, Optional

from openai import OpenAI

from .errors import PlanningError
from .models import Plan, PlanStep, ScreenshotData, Task, UIElement
from .steps import SUPPORTED_STEPS

logger = logging.getLogger(__name__)


class Planner:
    """
    任务规划器

    Args:
        api_key: API 密钥
        base_url: API 基础 URL
        model: 模型名称
        client: 可选，直接传入 OpenAI 兼容的客户端
    """

    def __init__(self, api_key: str = "", base_url: str = "", model: str = "",
                 client: Optional[Any] = None, temperature: float = 0.7):
        self.client = client or OpenAI(
            api_key=api_key,
            base_url=base_url or None,
        )
        self.model = model
        self.temperature = temperature
        self.controlled_os = platform.system()

    def _get_system_prompt(self) -> str:
        actions = ", ".join(f'"{a}"' for a in SUPPORTED_STEPS)
        return f"""你是一个可以操控电脑的智能体，负责把用户任务拆解为可执行的步骤。

## 系统信息
- 当前操作系统: {self.controlled_os}

## 可用动作类型
- "capture": 截图，参数 {{"display": 0}}
- "click": 点击坐标，参数 {{"x": 100, "y": 200, "button": "left|right|middle|double"}}
- "type": 输入文字，参数 {{"text": "...", "delay": 50}}
- "key": 按键/快捷键，参数 {{"key": "c", "modifiers": ["ctrl"]}}
- "wait": 等待，参数 {{"duration": 1000}}（毫秒）
- "analyze": 识别当前屏幕的界面元素
- "scroll": 滚动，参数 {{"x": 0, "y": 0, "direction": "up|down|left|right", "amount": 3}}
- "drag": 拖拽，参数 {{"from_x": 0, "from_y": 0, "to_x": 10, "to_y": 10}}
- "launch": 启动程序，参数 {{"path": "...", "args": []}}

只允许使用以下动作: {actions}。坐标必须是具体的数字。

## 输出格式

```json
{{
    "analysis": "对当前屏幕的分析",
    "plan": [
        {{"step": 1, "action": "click", "description": "这一步做什么", "parameters": {{"x": 100, "y": 200}}}}
    ]
}}
```

注意：只输出 JSON，不要有其他文字。"""

    def _get_user_prompt(self, task: Task, screenshot: Optional[ScreenshotData],
                         ui_elements: List[UIElement]) -> str:
        prompt_parts = [f"当前任务: {task.description}", ""]
        if screenshot is not None:
            prompt_parts.append(f"截图尺寸: {screenshot.width}x{screenshot.height}")
        prompt_parts.append(f"识别到的界面元素: {len(ui_elements)}")

        for i, element in enumerate(ui_elements, 1):
            box = element.bounding_box
            prompt_parts.append(
                f"- 元素 {i}: {element.type} 位于 ({box.x},{box.y}) {box.width}x{box.height}"
            )
            if element.text:
                prompt_parts.append(f"  文字: {element.text}")

        return "\n".join(prompt_parts)

    def request_plan(self, task: Task, screenshot: Optional[ScreenshotData],
                     ui_elements: List[UIElement]) -> Plan:
        """
        请求任务规划

        Raises:
            PlanningError: 模型调用失败或返回内容无法解析
        """
        content = [{"type": "text", "text": self._get_user_prompt(task, screenshot, ui_elements)}]
        if screenshot is not None and screenshot.image_base64:
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:image/png;base64,{screenshot.image_base64}"},
            })

        messages = [
            {"role": "system", "content": self._get_system_prompt()},
            {"role": "user", "content": content},
        ]

        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
            )
        except Exception as e:
            raise PlanningError(f"failed to get AI plan: {e}") from e

        output_text = completion.choices[0].message.content or ""
        logger.debug(f"规划模型输出: {output_text}")
        return self.parse_plan(output_text, name=task.description)

    @staticmethod
    def parse_plan(content: str, name: str = "") -> Plan:
        """解析规划响应"""
        json_str = content.replace("```json", "").replace("```", "").strip()
        try:
            json_dict = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise PlanningError(f"invalid plan format: {e}") from e

        if not isinstance(json_dict, dict) or not isinstance(json_dict.get("plan"), list):
            raise PlanningError("invalid plan format: missing 'plan' list")

        steps = []
        for item in json_dict["plan"]:
            if not isinstance(item, dict) or not isinstance(item.get("action"), str):
                raise PlanningError(f"invalid plan step: {item!r}")
            steps.append(PlanStep(
                action=item["action"],
                description=str(item.get("description", "")),
                parameters=item.get("parameters") or {},
            ))

        return Plan(steps=steps, name=name, analysis=str(json_dict.get("analysis", "")))
