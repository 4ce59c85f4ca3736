"""
Configuration settings for the live interview service.
All settings can be overridden via environment variables.
"""
import os
from typing import List
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class LLMConfig:
    """LLM server configuration (llama.cpp compatible /completion endpoint)."""
    base_url: str = field(default_factory=lambda: os.getenv("LLM_URL", "http://localhost:9000"))
    completion_endpoint: str = "/completion"
    timeout: int = field(default_factory=lambda: int(os.getenv("LLM_TIMEOUT", "6")))
    max_retries: int = 1

    # Default generation parameters
    default_temperature: float = 0.7
    default_top_p: float = 0.9
    default_repeat_penalty: float = 1.2

    @property
    def completion_url(self) -> str:
        return f"{self.base_url}{self.completion_endpoint}"


@dataclass
class TranscriptionConfig:
    """Streaming speech-to-text (Deepgram live) configuration."""
    api_key: str = field(default_factory=lambda: os.getenv("DEEPGRAM_API_KEY", ""))
    model: str = field(default_factory=lambda: os.getenv("DEEPGRAM_MODEL", "nova-2"))
    language: str = field(default_factory=lambda: os.getenv("DEEPGRAM_LANGUAGE", "en-US"))
    punctuate: bool = True
    smart_format: bool = True
    interim_results: bool = True
    # Silence (ms) after which the provider reports an utterance boundary
    utterance_end_ms: int = field(default_factory=lambda: int(os.getenv("DEEPGRAM_UTTERANCE_END_MS", "1000")))
    keepalive: bool = True


@dataclass
class WhisperConfig:
    """Whisper STT configuration for one-shot file transcription."""
    model_path: str = field(default_factory=lambda: os.getenv("WHISPER_MODEL_PATH", "base.en"))
    device: str = field(default_factory=lambda: os.getenv("WHISPER_DEVICE", "cpu"))
    compute_type: str = field(default_factory=lambda: os.getenv("WHISPER_COMPUTE_TYPE", "int8"))


@dataclass
class InterviewConfig:
    """Interview flow configuration."""
    default_job_role: str = field(default_factory=lambda: os.getenv("INTERVIEW_JOB_ROLE", "Software Engineer"))

    # The interview ends after this many answered questions
    max_questions: int = field(default_factory=lambda: int(os.getenv("INTERVIEW_MAX_QUESTIONS", "5")))

    # Question generation guard rails
    question_timeout: float = field(default_factory=lambda: float(os.getenv("INTERVIEW_QUESTION_TIMEOUT", "20")))
    question_retries: int = field(default_factory=lambda: int(os.getenv("INTERVIEW_QUESTION_RETRIES", "1")))

    # Time the LLM generator may spend before using a scripted question.
    # Must stay below question_timeout or the fallback never gets a chance.
    llm_budget: float = field(default_factory=lambda: float(os.getenv("INTERVIEW_LLM_BUDGET", "15")))

    # "llm" asks the LLM server, "scripted" only uses the built-in questions
    question_source: str = field(default_factory=lambda: os.getenv("INTERVIEW_QUESTION_SOURCE", "llm"))


@dataclass
class ServerConfig:
    """HTTP / WebSocket server configuration."""
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "5001")))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    debug_endpoints: bool = field(default_factory=lambda: _env_bool("DEBUG_ENDPOINTS", True))
    cors_origins: List[str] = field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    )


class Config:
    """Main configuration class combining all config sections."""

    def __init__(self):
        self.llm = LLMConfig()
        self.transcription = TranscriptionConfig()
        self.whisper = WhisperConfig()
        self.interview = InterviewConfig()
        self.server = ServerConfig()

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment variables."""
        return cls()


# Global config instance
config = Config()
