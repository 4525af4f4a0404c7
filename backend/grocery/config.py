from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {
        "env_file": "../.env",
        "extra": "ignore",
        "env_prefix": "",
        "case_sensitive": False,
    }

    # Temporal
    temporal_address: str = "localhost:7233"
    temporal_namespace: str = "default"
    temporal_api_key: str | None = None
    temporal_task_queue: str = "grocery-tasks"

    # AI APIs
    anthropic_api_key: str = ""
    llm_model: str = "claude-sonnet-4-5-20250929"
    llm_max_tokens: int = 2048
    llm_max_attempts: int = 3
    strict_schema_keys: bool = True

    # Budget
    budget_ceiling: float = 100.0
    default_item_price: float = 2.0

    # Reference data
    data_dir: str = ""
    prices_file: str = "prices.json"
    inventory_file: str = "inventory.json"

    # App
    environment: str = "development"
    log_level: str = "INFO"
    log_file: str = ""


settings = Settings()
