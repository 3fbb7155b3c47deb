from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    debug: bool = False
    log_level: str = "INFO"
    date_default_dayfirst: bool = False

    # Import history persistence (key-value store keyed by session id)
    history_database_url: str = "sqlite:///./import_history.db"
    history_namespace: str = "default"
    history_max_sessions: int = 100  # Oldest sessions are evicted beyond this count

    # Upload limits
    upload_max_file_size_mb: int = 10
    upload_warn_file_size_mb: int = 1

    # Persistence chunking for the saving stage
    import_batch_size: int = 100

    # Data-quality thresholds
    min_description_length: int = 10       # Shorter descriptions are reported as info
    max_description_length: int = 1000
    empty_row_warning_ratio: float = 0.5   # Warn when more than this share of rows is blank
    duplicate_similarity_threshold: float = 0.95

    # Custom import templates; empty keeps them in memory only
    template_store_path: str = ""

    model_config = ConfigDict(env_file=".env", extra="ignore")


settings = Settings()
