from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_debug: bool = False

    mysql_host: str = "127.0.0.1"
    mysql_port: int = 3306
    mysql_database: str = "coursegate"
    mysql_user: str = "coursegate"
    mysql_password: str = "change_me_mysql_app"

    session_ttl_hours: int = Field(default=24, gt=0)
    remember_me_ttl_days: int = Field(default=30, gt=0)
    max_active_sessions: int = Field(default=5, ge=1)
    provider_timeout_seconds: float = Field(default=5.0, gt=0)
    provider_retry_backoff_seconds: float = Field(default=0.2, ge=0)

    identity_provider: str = "local"

    cognito_region: str = "ap-south-1"
    cognito_client_id: str = ""
    cognito_client_secret: str = ""
    cognito_endpoint_url: str | None = None

    local_idp_signing_key: str = "change_me_local_idp_signing_key_32b"
    local_idp_issuer: str = "coursegate"
    local_idp_access_ttl_minutes: int = Field(default=60, gt=0)
    local_idp_refresh_ttl_days: int = Field(default=30, gt=0)

    @property
    def database_url(self) -> str:
        return (
            f"mysql+aiomysql://{self.mysql_user}:{self.mysql_password}"
            f"@{self.mysql_host}:{self.mysql_port}/{self.mysql_database}"
        )

    @property
    def resolved_cognito_endpoint(self) -> str:
        if self.cognito_endpoint_url:
            return self.cognito_endpoint_url.rstrip("/") + "/"
        return f"https://cognito-idp.{self.cognito_region}.amazonaws.com/"


settings = Settings()
