from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    SQLSERVER_CONN_STRING: str = ""
    MAX_WORKERS: int = 0
    DB_CONNECT_RETRIES: int = 3
    DB_CONNECT_RETRY_DELAY: float = 1.0
    DB_CONNECT_TIMEOUT: int = 30
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
