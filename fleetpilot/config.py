from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # LLM
    llm_provider: str = "anthropic"
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    deepseek_api_key: str = ""
    llm_api_key: str = ""  # Generic key, used when the provider-specific key is empty
    llm_model: str = "claude-sonnet-4-20250514"
    llm_base_url: str = ""  # Custom base URL for openai_compatible provider
    llm_timeout_seconds: float = 30.0

    # Session
    auto_execute: bool = True
    debug: bool = False

    # Fleet
    fleet_backend: str = "pm2"  # "pm2" | "memory"
    pm2_bin: str = "pm2"
    health_poll_interval: float = 5.0
    watch_restart_limit: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
