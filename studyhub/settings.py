from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # postgres:// URLs are rewritten to the psycopg driver in db.normalize_database_url
    DATABASE_URL: str = Field(default="sqlite:///./studyhub.db")
    JWT_SECRET: str = Field(default="dev_change_me_to_random_32+chars")
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_TTL_DAYS: int = 7
    REFRESH_TOKEN_TTL_DAYS: int = 30

    LOGIN_RATE_MAX: int = 5
    LOGIN_RATE_WINDOW_SECONDS: int = 15 * 60
    REGISTER_RATE_MAX: int = 3
    REGISTER_RATE_WINDOW_SECONDS: int = 60 * 60

    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = ""
    OPENAI_DEFAULT_MODEL: str = "gpt-3.5-turbo"
    OPENAI_TIMEOUT_SECONDS: float = 60.0

    CORS_ORIGINS: str = "*"
    LOG_LEVEL: str = "info"
    # X-Forwarded-For is only honoured from these peers; rate gates key on the client address
    FORWARDED_ALLOW_IPS: str = "127.0.0.1"

settings = Settings()
