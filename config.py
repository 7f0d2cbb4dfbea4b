import os
from typing import Dict, Optional
from dataclasses import dataclass, asdict
from dotenv import load_dotenv

# 加载 .env 文件
load_dotenv()


@dataclass
class ModelConfig:
    """模型配置"""
    model: str
    api_key: str
    base_url: Optional[str] = None

    def is_complete(self) -> bool:
        """检查配置是否完整"""
        return bool(self.model and self.api_key and self.base_url)


@dataclass
class ServerConfig:
    """服务器配置（HTTP API 服务）"""
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    access_token: str = ""  # 为空时启动时随机生成

    def is_complete(self) -> bool:
        """检查配置是否完整"""
        return bool(self.host and self.port)


@dataclass
class AgentConfig:
    """Agent 运行配置"""
    monitor_interval: float = 5.0  # 后台采集上下文的周期（秒）
    context_history_size: int = 100
    max_task_history: int = 1000
    recording_capacity: int = 1000
    type_delay_ms: int = 50
    wait_ms: int = 1000
    task_timeout: Optional[float] = None  # 单个任务的截止时间（秒），None 表示不限制
    screenshot_dir: Optional[str] = None  # 设置后任务中的截图会保存到该目录
    learning_enabled: bool = True
    max_learning_events: int = 10000

    def to_dict(self) -> Dict:
        return asdict(self)


def _optional_float(value: str) -> Optional[float]:
    return float(value) if value else None


class Config:
    """统一配置管理器"""

    def __init__(self):
        # 服务器配置（HTTP API 服务）
        self.server = ServerConfig(
            host=os.getenv("SERVER_HOST", "0.0.0.0"),
            port=int(os.getenv("SERVER_PORT", "8000")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            access_token=os.getenv("ACCESS_TOKEN", "")
        )

        # 模型配置 - Planning Model
        self.planning = ModelConfig(
            model=os.getenv("PLANNING_MODEL", ""),
            api_key=os.getenv("PLANNING_API_KEY", ""),
            base_url=os.getenv("PLANNING_BASE_URL", "")
        )

        # 模型配置 - Grounding Model（界面元素识别）
        self.grounding = ModelConfig(
            model=os.getenv("GROUNDING_MODEL", ""),
            api_key=os.getenv("GROUNDING_API_KEY", ""),
            base_url=os.getenv("GROUNDING_BASE_URL", "")
        )

        # Agent 配置
        self.agent = AgentConfig(
            monitor_interval=float(os.getenv("MONITOR_INTERVAL", "5")),
            context_history_size=int(os.getenv("CONTEXT_HISTORY_SIZE", "100")),
            max_task_history=int(os.getenv("MAX_TASK_HISTORY", "1000")),
            recording_capacity=int(os.getenv("RECORDING_CAPACITY", "1000")),
            type_delay_ms=int(os.getenv("TYPE_DELAY_MS", "50")),
            wait_ms=int(os.getenv("WAIT_MS", "1000")),
            task_timeout=_optional_float(os.getenv("TASK_TIMEOUT", "")),
            screenshot_dir=os.getenv("SCREENSHOT_DIR") or None,
            learning_enabled=os.getenv("LEARNING_ENABLED", "true").lower() == "true",
            max_learning_events=int(os.getenv("MAX_LEARNING_EVENTS", "10000"))
        )

    def validate(self) -> Dict[str, bool]:
        """验证配置，返回各部分的验证结果"""
        results = {}

        if self.server.is_complete():
            print("✅ 服务器配置正常")
            results["server"] = True
        else:
            print("❌ 服务器配置不完整")
            results["server"] = False

        if self.planning.is_complete():
            print("✅ Planning 模型配置正常")
            results["planning"] = True
        else:
            print("❌ Planning 模型配置不完整")
            results["planning"] = False

        if self.grounding.is_complete():
            print("✅ Grounding 模型配置正常")
            results["grounding"] = True
        else:
            print("⊘ Grounding 模型未配置，界面元素识别不可用")
            results["grounding"] = False

        if self.agent.monitor_interval > 0:
            results["agent"] = True
        else:
            print("❌ MONITOR_INTERVAL 必须大于 0")
            results["agent"] = False

        return results

    def get_model_config(self, model_type: str, override: Optional[Dict] = None) -> Dict:
        """获取模型配置，支持请求覆盖

        Args:
            model_type: "planning" 或 "grounding"
            override: 可选的覆盖配置
        """
        model_config = getattr(self, model_type, None)
        if not isinstance(model_config, ModelConfig):
            raise ValueError(f"Unknown model type: {model_type}")

        config_dict = {
            "model": model_config.model,
            "api_key": model_config.api_key,
            "base_url": model_config.base_url or ""
        }

        # 请求值优先于配置值
        if override:
            for key, value in override.items():
                if value and key in config_dict:
                    config_dict[key] = value

        return config_dict


# 全局配置实例
config = Config()
