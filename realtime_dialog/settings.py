import uuid

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .schemas import DialogConfig, WsConnectConfig


DEFAULT_BASE_URL = "wss://openspeech.bytedance.com/api/v3/realtime/dialogue"


class Settings(BaseSettings):
    """Configuration for connecting to the realtime dialog service."""

    base_url: str = DEFAULT_BASE_URL
    app_id: str = ""
    access_key: str = ""
    resource_id: str = "volc.speech.dialog"
    app_key: str = "PlgvMymc7f3tQnJ6"

    bot_name: str = "豆包"
    tts_sample_rate: int = 24000

    finish_timeout: float = 2.0
    close_delay: float = 0.1
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="DIALOG_", env_file=".env", extra="ignore")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, value: str) -> str:
        if not value.startswith(("ws://", "wss://")):
            raise ValueError("The dialog base URL must use ws:// or wss://.")
        return value

    @field_validator("finish_timeout", "close_delay")
    @classmethod
    def validate_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Must not be negative.")
        return value

    def missing(self) -> list[str]:
        """Names of required settings that are still empty."""
        return [name for name in ("app_id", "access_key") if not getattr(self, name).strip()]

    def connect_config(self) -> WsConnectConfig:
        return WsConnectConfig(
            base_url=self.base_url,
            headers={
                "X-Api-App-ID": self.app_id,
                "X-Api-Access-Key": self.access_key,
                "X-Api-Resource-Id": self.resource_id,
                "X-Api-App-Key": self.app_key,
                "X-Api-Connect-Id": str(uuid.uuid4()),
            },
        )

    def dialog_config(self) -> DialogConfig:
        return DialogConfig(
            ws_connect_config=self.connect_config(),
            start_session_req={
                "tts": {
                    "audio_config": {
                        "channel": 1,
                        "format": "pcm",
                        "sample_rate": self.tts_sample_rate,
                    },
                },
                "dialog": {"bot_name": self.bot_name},
            },
        )


settings = Settings()  # type: ignore[call-arg]
