from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

load_dotenv()


class S3Settings(BaseSettings):
    S3_REGION: str = Field(default="us-east-1")
    S3_ENDPOINT: str | None = Field(default=None)
    S3_BUCKET: str = Field(default=...)
    S3_KEY: str | None = Field(default=None)
    S3_SECRET: str | None = Field(default=None)

    @field_validator("S3_ENDPOINT")
    @classmethod
    def validate_https_endpoint(cls, v: str | None) -> str | None:
        """
        Validate that a custom S3 endpoint uses HTTPS to enforce encryption in transit.
        Leaving it unset targets the default AWS endpoint for the region.
        """
        if v is None or v == "":
            return None
        if not v.startswith("https://"):
            raise ValueError(
                "S3_ENDPOINT must use HTTPS protocol to ensure encryption in transit. "
                f"Got: {v}. Please update to use https://"
            )
        return v


def get_s3_settings() -> S3Settings:
    return S3Settings()
