from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="APP_", extra="ignore")

    # Database
    database_url: str = "sqlite:///./tbm_safety.sqlite3"

    # Internal mail service
    notification_base_url: str = "http://127.0.0.1:8001/v1"
    notifications_enabled: bool = True
    notification_timeout_seconds: float = 30.0
    mail_from: str = "Safety Team <noreply@example.com>"

    # Links in outgoing mail point here
    public_base_url: str = "http://localhost:5001"


settings = Settings()
