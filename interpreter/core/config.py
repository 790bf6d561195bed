"""
Application configuration
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "VoiceAssist Interpreter"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # Session logging verbosity: MINIMAL, STANDARD, VERBOSE, DEBUG
    INTERPRETER_LOG_LEVEL: str = "STANDARD"

    # Storage collaborator (sessions, messages, summaries, function-call webhook)
    PERSISTENCE_API_URL: str = "http://localhost:8000"
    PERSISTENCE_TIMEOUT_SEC: float = 10.0
    PERSISTENCE_MAX_RETRIES: int = 2

    # Transport acquisition
    HANDSHAKE_TIMEOUT_SEC: float = 15.0

    # Recovery timers
    RESPONSE_GRACE_WINDOW_SEC: float = 1.5  # Late transcript events after response.done
    RESPONSE_HARD_CEILING_SEC: float = 4.0  # Max time a unit stays open after response start

    # Side effects
    ACTION_DISPATCH_TIMEOUT_SEC: float = 10.0
    SUMMARY_DELAY_SEC: float = 2.0
    SHUTDOWN_PERSISTENCE_TIMEOUT_SEC: float = 10.0

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


# Global settings instance
settings = Settings()
