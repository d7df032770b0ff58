"""
Configuration management for the study app.
Handles API keys, model selection, generation and review settings.
"""

import logging

from pydantic_settings import BaseSettings, SettingsConfigDict

from studybuddy.review import ReviewConfig
from studybuddy.schemas import ConfigResponse, ConfigUpdate

GENERATION_MODES = ("all_or_nothing", "best_effort")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Keys
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None

    # Default provider
    default_ai_provider: str = "anthropic"

    # Model settings
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_model: str = "gpt-4o"

    # Database
    database_url: str = "sqlite:///studybuddy.db"

    # Generation
    generation_mode: str = "all_or_nothing"
    flashcard_count: int = 10
    quiz_question_count: int = 8
    max_content_chars: int = 30000
    max_context_chars: int = 10000

    # Library behaviour
    cascade_delete: bool = True

    # Review scheduling
    review_interval_days: int = 1
    mastered_interval_days: int = 7

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _as_bool(value: str | bool) -> bool:
    if isinstance(value, bool):
        return value
    return value.strip().lower() in ("1", "true", "yes", "on")


class ConfigManager:
    """Manager for application configuration."""

    def __init__(self, config_dao=None, settings: Settings | None = None):
        """
        Initialize configuration manager.

        Args:
            config_dao: Optional ConfigDAO for persistent overrides
            settings: Optional settings, loaded from the environment by default
        """
        self.settings = settings or Settings()
        self.config_dao = config_dao

    def _get(self, key: str, default):
        if self.config_dao:
            value = self.config_dao.get(key)
            if value is not None:
                return value
        return default

    def get_config_response(self) -> ConfigResponse:
        """
        Get configuration response (without exposing API keys).

        Returns:
            ConfigResponse with safe config data
        """
        return ConfigResponse(
            default_provider=self.get_default_provider(),
            anthropic_model=self.get_model("anthropic"),
            openai_model=self.get_model("openai"),
            has_anthropic_key=bool(self.get_api_key("anthropic")),
            has_openai_key=bool(self.get_api_key("openai")),
            generation_mode=self.get_generation_mode(),
            cascade_delete=self.get_cascade_delete(),
            flashcard_count=self.get_flashcard_count(),
            quiz_question_count=self.get_quiz_question_count(),
            review_interval_days=self.get_review_config().review_interval_days,
            mastered_interval_days=self.get_review_config().mastered_interval_days,
        )

    def update_config(self, config_update: ConfigUpdate) -> ConfigResponse:
        """
        Update configuration values.

        Args:
            config_update: Configuration updates

        Returns:
            Updated ConfigResponse
        """
        if not self.config_dao:
            raise ValueError("ConfigDAO not available for updates")

        for key, value in config_update.model_dump(exclude_none=True).items():
            self.config_dao.set(key, str(value))

        return self.get_config_response()

    def get_api_key(self, provider: str) -> str | None:
        """
        Get API key for a provider.

        Args:
            provider: "anthropic" or "openai"

        Returns:
            API key if available, None otherwise
        """
        if provider == "anthropic":
            return self._get("anthropic_api_key", None) or self.settings.anthropic_api_key
        elif provider == "openai":
            return self._get("openai_api_key", None) or self.settings.openai_api_key
        else:
            return None

    def get_model(self, provider: str) -> str:
        """Get model name for a provider."""
        if provider == "anthropic":
            return self._get("anthropic_model", self.settings.anthropic_model)
        elif provider == "openai":
            return self._get("openai_model", self.settings.openai_model)
        else:
            return ""

    def get_default_provider(self) -> str:
        """Get the default AI provider."""
        return self._get("default_provider", self.settings.default_ai_provider)

    def get_generation_mode(self) -> str:
        """Get the pipeline failure mode: all_or_nothing or best_effort."""
        mode = self._get("generation_mode", self.settings.generation_mode)
        if mode not in GENERATION_MODES:
            raise ValueError(f"Unknown generation mode: {mode}")
        return mode

    def get_cascade_delete(self) -> bool:
        """Whether deleting a material also deletes its derived artifacts."""
        return _as_bool(self._get("cascade_delete", self.settings.cascade_delete))

    def get_flashcard_count(self) -> int:
        return int(self._get("flashcard_count", self.settings.flashcard_count))

    def get_quiz_question_count(self) -> int:
        return int(self._get("quiz_question_count", self.settings.quiz_question_count))

    def get_review_config(self) -> ReviewConfig:
        """
        Get review scheduling configuration.

        Returns:
            ReviewConfig with current settings
        """
        return ReviewConfig(
            review_interval_days=int(
                self._get("review_interval_days", self.settings.review_interval_days)
            ),
            mastered_interval_days=int(
                self._get("mastered_interval_days", self.settings.mastered_interval_days)
            ),
        )
