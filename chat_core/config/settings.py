"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
编排层只读取 ``GenerationConfig`` 快照，不直接依赖 Settings 实例。
"""

import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SYSTEM_PROMPT = (
    "You are JavaGoat, a helpful and secure AI assistant. Provide concise and accurate "
    "responses, format code blocks with markdown, and be friendly."
)

ImageProviderName = Literal["pollinations", "openrouter"]


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


@dataclass(frozen=True)
class GenerationConfig:
    """一次生成所读取的只读配置快照。

    - credential: OpenRouter API 密钥（文本生成与 openrouter 图像共用）。
    - model_id: 文本对话模型。
    - system_prompt: 每次请求置于最前的 system 消息。
    - image_provider: 首选图像 Provider（pollinations / openrouter）。
    - image_model: openrouter 图像模型。
    """

    credential: Optional[str]
    model_id: str
    system_prompt: str
    image_provider: str
    image_model: Optional[str]


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- OpenRouter ----
    openrouter_api_key: Optional[str] = Field(default=None, description="OpenRouter API 密钥")
    model_id: str = Field(default="openai/gpt-4o-mini", description="文本对话模型 ID")
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, description="系统提示词")

    # ---- 图像生成 ----
    image_provider: ImageProviderName = Field(
        default="pollinations",
        description="首选图像 Provider：pollinations 或 openrouter",
    )
    image_model: Optional[str] = Field(
        default="stabilityai/stable-diffusion-xl-base-1.0",
        description="openrouter 图像模型 ID",
    )

    # ---- 运行环境 ----
    app_name: str = Field(default="JavaGoat", description="X-Title 请求头")
    app_referer: str = Field(default="http://localhost", description="HTTP-Referer 请求头")
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openrouter_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        # 空字符串视为未配置
        if v is not None and not v.strip():
            return None
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )

    def snapshot(self) -> GenerationConfig:
        """导出编排层使用的只读配置快照。"""
        return GenerationConfig(
            credential=self.openrouter_api_key,
            model_id=self.model_id,
            system_prompt=self.system_prompt,
            image_provider=self.image_provider,
            image_model=self.image_model,
        )


settings = Settings()
