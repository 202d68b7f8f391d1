from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class HeartbeatSettings(BaseSettings):
    """
    Configuration of the device heartbeat worker.

    Read from HEARTBEAT_* environment variables (or a .env file); S3 access
    is configured separately through core.s3.settings.S3Settings.
    """

    model_config = SettingsConfigDict(env_prefix="HEARTBEAT_", extra="ignore")

    # Queue settings
    # Required by the worker loop only
    SQS_QUEUE_URL: str | None = Field(default=None)
    AWS_REGION: str = Field(default="us-east-1")
    MAX_MESSAGES: int = Field(default=10, ge=1, le=10)
    WAIT_SECONDS: int = Field(default=20, ge=0, le=20)

    # Local buffer
    DB_PATH: str = Field(default="data/heartbeats.db")

    # Consolidation
    FLUSH_INTERVAL_SECONDS: int = Field(default=3600, gt=0)
    S3_BASE_PATH: str = Field(default="")


def get_settings(**overrides) -> HeartbeatSettings:
    """
    Build the settings from the environment, CLI values taking precedence.

    Overrides set to None are ignored so unset CLI options fall back to the environment.
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    return HeartbeatSettings(**values)
