"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class ProviderConfig(BaseModel):
    """Which generation backend variant serves every capability."""

    name: Literal["ark", "mock"] = "ark"


class ArkConfig(BaseModel):
    """Volcengine Ark endpoints: chat, image generation and video tasks."""

    api_key: str = ""
    base_url: str = "https://ark.cn-beijing.volces.com/api/v3"
    llm_model: str = "doubao-seed-1-6-lite-251015"
    image_model: str = "doubao-seedream-4-5-251128"
    video_model: str = "doubao-seedance-1-5-pro-251215"
    timeout_seconds: float = 90.0
    llm_timeout_seconds: float = 20.0
    llm_max_retry: int = 1
    video_timeout_seconds: float = 30.0

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Endpoint paths are joined with a leading slash."""
        return v.rstrip("/")


class SpeechConfig(BaseModel):
    """Volcengine flash speech recognition."""

    app_id: str = ""
    access_key: str = ""
    resource_id: str = "volc.bigasr.auc_turbo"
    asr_endpoint: str = "https://openspeech.bytedance.com/api/v3/auc/bigmodel/recognize/flash"
    asr_timeout_seconds: float = 20.0


class TtsConfig(BaseModel):
    """DashScope text-to-speech."""

    api_key: str = ""
    endpoint: str = (
        "https://dashscope.aliyuncs.com/api/v1/services/aigc/multimodal-generation/generation"
    )
    model: str = "qwen3-tts-flash"
    voice: str = "Cherry"
    language_type: str = "Chinese"
    timeout_seconds: float = 25.0


class StoreConfig(BaseModel):
    """Lifetimes of the in-memory task ledger and session store."""

    session_ttl_seconds: float = 24 * 60 * 60
    sweep_interval_seconds: float = 5 * 60
    task_ttl_seconds: float = 60 * 60
    dialog_max_messages: int = 24


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = 0.6
    retry_max_delay: float = 4.5
    retry_jitter: float = 0.22
    image_retry_attempts: int = Field(default=3, ge=1)
    image_retry_base_delay: float = 0.65
    image_retry_max_delay: float = 5.0
    video_poll_interval: float = 2.5
    video_poll_timeout: float = 12 * 60
    default_clip_duration: int = 5
    default_max_scenes: int = 6


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = 9000
    cors_origins: list[str] = ["*"]
    max_artifact_bytes: int = 200_000
    max_image_base64_chars: int = 15_000_000
    max_audio_base64_chars: int = 16_000_000


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: TALEWEAVER_, delimiter: __)
    2. YAML file (config.yaml)
    3. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="TALEWEAVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider: ProviderConfig = ProviderConfig()
    ark: ArkConfig = ArkConfig()
    speech: SpeechConfig = SpeechConfig()
    tts: TtsConfig = TtsConfig()
    store: StoreConfig = StoreConfig()
    pipeline: PipelineConfig = PipelineConfig()
    server: ServerConfig = ServerConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Environment variables
        2. YAML file
        3. Init settings (programmatic defaults)
        """
        return (
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            init_settings,
        )

    def missing_credentials(self) -> list[str]:
        """List credential keys the selected provider needs but lacks."""
        if self.provider.name != "ark":
            return []
        required = {
            "ark.api_key": self.ark.api_key,
            "speech.app_id": self.speech.app_id,
            "speech.access_key": self.speech.access_key,
            "tts.api_key": self.tts.api_key,
        }
        return [key for key, value in required.items() if not value]


# Singleton instance
settings = Settings()
