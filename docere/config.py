from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'Docere'
    app_env: str = 'local'
    app_timezone: str = 'UTC'
    log_level: str = 'INFO'
    store_backend: str = 'memory'
    database_url: str = 'sqlite:///./docere.db'
    auth_secret: str = 'change-me'
    auth_min_password_length: int = 8
    auth_session_expiry_hours: int = 12
    attendance_default_duration_seconds: int = 120
    attendance_max_duration_seconds: int = 6 * 60 * 60
    enable_expiry_sweep: bool = True
    attendance_sweep_interval_seconds: int = 15
    parent_messages_limit: int = 10
    ws_queue_limit: int = 100
    users_seed_file: str = ''
    app_base_url: str = ''
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200


settings = Settings()
