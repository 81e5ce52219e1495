"""
MODULE OVERVIEW:
Application-wide configuration using Pydantic Settings.

WHAT IS HAPPENING HERE:
Credentials, gateway timings and the close-code table all live here. The close
codes are gateway-specific data (the QQ guild gateway documents 4914/4915 as
"bot offline/banned"), so they are settings rather than protocol constants:
pointing the client at a different gateway means changing env vars, not code.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Credentials
    APP_ID: int = 0
    TOKEN: str = ""
    TOKEN_TYPE: str = "Bot"

    # HTTP bootstrap
    API_BASE_URL: str = "https://api.sgroup.qq.com"
    HTTP_TIMEOUT_S: float = 3.0

    LOG_LEVEL: str = "INFO"

    # Session start pacing
    CONCURRENCY_WINDOW_S: int = 2

    # Per-shard connection
    DEFAULT_HEARTBEAT_INTERVAL_S: float = 60.0
    FRAME_QUEUE_SIZE: int = 2000

    # Close-code classification
    FATAL_CLOSE_CODES: list[int] = [4914, 4915]
    REIDENTIFY_CLOSE_CODES: list[int] = [4006, 4007]

    # Name of a POSIX signal that forces every shard to reconnect, e.g. "SIGUSR1"
    RESUME_SIGNAL: str | None = None

    # Sandbox gateway
    SANDBOX_PORT: int = 8000
    SANDBOX_HEARTBEAT_INTERVAL_MS: int = 30000
    SANDBOX_SHARDS: int = 1
    SANDBOX_MAX_CONCURRENCY: int = 1
    SANDBOX_MESSAGE_INTERVAL_S: float = 5.0

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = 'ignore'


settings = Settings()
