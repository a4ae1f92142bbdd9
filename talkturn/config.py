"""
Configuration management using Pydantic Settings.
Loads all environment variables with validation.
"""

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

from talkturn.models import SilenceMode


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses .env file in development, environment variables in production.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API Keys (optional so the turn engine can run with injected collaborators)
    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key for the conversation partner replies"
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI chat model used for replies"
    )
    openai_organization_id: Optional[str] = Field(
        default=None,
        description="OpenAI organization ID"
    )
    elevenlabs_api_key: Optional[str] = Field(
        default=None,
        description="ElevenLabs API key for text-to-speech"
    )
    elevenlabs_voice_id: str = Field(
        default="21m00Tcm4TlvDq8ikWAM",
        description="ElevenLabs voice ID (default: Rachel)"
    )
    assistant_name: str = Field(
        default="talktime",
        description="Name the assistant introduces itself with (used by the echo filter)"
    )

    # Environment
    environment: str = Field(
        default="development",
        description="Environment: development, staging, or production"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )

    # Silence policy
    silence_mode: SilenceMode = Field(
        default=SilenceMode.PUSH_TO_TALK,
        description="Default microphone mode for new conversations"
    )
    custom_silence_threshold_s: Optional[float] = Field(
        default=None,
        ge=1.0,
        le=60.0,
        description="Explicit silence threshold overriding the mode defaults"
    )
    patient_silence_s: float = Field(default=15.0, gt=0, description="Patient mode silence window")
    push_to_talk_silence_s: float = Field(default=8.0, gt=0, description="Push-to-talk silence window")
    continuous_silence_short_s: float = Field(default=8.0, gt=0, description="Continuous mode, < 10 words")
    continuous_silence_medium_s: float = Field(default=10.0, gt=0, description="Continuous mode, < 30 words")
    continuous_silence_long_s: float = Field(default=12.0, gt=0, description="Continuous mode, >= 30 words")
    min_words_before_timers: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Below this word count no timers start (except in patient mode)"
    )

    # Early completion
    early_poll_interval_ms: int = Field(
        default=500,
        ge=50,
        le=5000,
        description="Early-completion poll interval in milliseconds"
    )
    early_completion_min_wait_s: float = Field(
        default=3.0,
        ge=0.0,
        description="Minimum silence before an early finalize is allowed"
    )
    early_completion_min_confidence: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Completion confidence that must be exceeded for an early finalize"
    )

    # Cooldown after the system speaks
    cooldown_buffer_s: float = Field(default=2.0, ge=0.0, description="Audio device quiesce buffer")
    lock_release_delay_s: float = Field(default=8.0, ge=0.0, description="Extra delay before the mic lock clears")
    auto_rearm_listening: bool = Field(
        default=True,
        description="Re-open the microphone after a system turn in continuous mode"
    )
    greeting_text: Optional[str] = Field(
        default="Hello! I'm TalkTime, your friendly English conversation partner. What would you like to talk about today?",
        description="Spoken when a conversation starts (empty to disable)"
    )

    # Synthesis readiness
    voice_load_max_attempts: int = Field(default=10, ge=1, le=20)
    voice_load_base_delay_s: float = Field(default=0.05, gt=0)
    voice_load_max_delay_s: float = Field(default=0.5, gt=0)
    synthesis_test_timeout_s: float = Field(default=2.0, gt=0)

    # External calls
    response_timeout_s: float = Field(
        default=15.0,
        gt=0,
        description="Maximum time to wait for a reply from the response service"
    )
    playback_timeout_s: float = Field(
        default=15.0,
        gt=0,
        description="Maximum time to wait for the client to report playback complete"
    )
    recent_context_messages: int = Field(
        default=6,
        ge=0,
        le=50,
        description="History messages sent along with each transcript"
    )

    # Server Settings
    host: str = Field(
        default="0.0.0.0",
        description="Server host address"
    )
    port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="Server port"
    )
    session_idle_timeout_s: float = Field(
        default=300.0,
        gt=0,
        description="Sessions with no client message for this long are closed"
    )
    session_sweep_interval_s: float = Field(
        default=30.0,
        gt=0,
        description="How often to look for idle sessions"
    )

    # CORS
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Frontend URL for CORS"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the allowed values."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v_upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is one of the allowed values."""
        allowed = ["development", "staging", "production"]
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v_lower

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"


class TurnTimings(BaseModel):
    """Timing values the turn orchestrator runs on, all in seconds."""

    patient_silence_s: float = 15.0
    push_to_talk_silence_s: float = 8.0
    continuous_silence_short_s: float = 8.0
    continuous_silence_medium_s: float = 10.0
    continuous_silence_long_s: float = 12.0
    min_words_before_timers: int = 5
    early_poll_interval_s: float = 0.5
    early_completion_min_wait_s: float = 3.0
    early_completion_min_confidence: float = 0.8
    countdown_tick_s: float = 1.0
    cooldown_buffer_s: float = 2.0
    lock_release_delay_s: float = 8.0
    response_timeout_s: float = 15.0

    @classmethod
    def from_settings(cls, s: "Settings") -> "TurnTimings":
        return cls(
            patient_silence_s=s.patient_silence_s,
            push_to_talk_silence_s=s.push_to_talk_silence_s,
            continuous_silence_short_s=s.continuous_silence_short_s,
            continuous_silence_medium_s=s.continuous_silence_medium_s,
            continuous_silence_long_s=s.continuous_silence_long_s,
            min_words_before_timers=s.min_words_before_timers,
            early_poll_interval_s=s.early_poll_interval_ms / 1000.0,
            early_completion_min_wait_s=s.early_completion_min_wait_s,
            early_completion_min_confidence=s.early_completion_min_confidence,
            cooldown_buffer_s=s.cooldown_buffer_s,
            lock_release_delay_s=s.lock_release_delay_s,
            response_timeout_s=s.response_timeout_s,
        )


# Global settings instance
settings = Settings()
