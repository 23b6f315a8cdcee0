"""Application configuration using pydantic-settings.

Loads secrets and connection settings from environment variables and .env file.
Judge behavior config (models, sampling, schedule, alerting) loaded from judges.toml.

Priority: CLI args > Environment variables (.env) > judges.toml > hardcoded defaults
"""

import tomllib
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Pipeline settings from judges.toml
# ---------------------------------------------------------------------------


class JudgeConfig(BaseModel):
    """Per-judge overrides."""

    model: str | None = None
    temperature: float | None = None
    groq_model: str = ""
    ollama_model: str = ""


class JudgesTable(BaseModel):
    """The [judges] table from judges.toml."""

    groundedness: JudgeConfig = Field(default_factory=JudgeConfig)
    relevance: JudgeConfig = Field(default_factory=JudgeConfig)
    safety: JudgeConfig = Field(default_factory=JudgeConfig)
    comprehensiveness: JudgeConfig = Field(default_factory=JudgeConfig)


class DefaultsTable(BaseModel):
    """The [defaults] table from judges.toml."""

    model: str = "meta-llama/llama-3.1-70b-instruct"
    temperature: float = 0.0
    timeout: int = 120
    min_response_length: int = 1


class SamplingConfig(BaseModel):
    """The [sampling] table: which conversations are eligible and how many to draw."""

    window_days: int = Field(default=7, ge=1)
    sample_size: int = Field(default=100, ge=0)
    min_response_chars: int = 50
    min_query_chars: int = 10


class ConcurrencyConfig(BaseModel):
    """The [concurrency] table from judges.toml."""

    max_concurrency: int = Field(default=8, ge=1)
    deadline_seconds: float | None = None


class RetryConfig(BaseModel):
    """The [retry] table from judges.toml."""

    max_attempts: int = 3
    initial_interval: float = 1.0
    backoff_factor: float = 2.0


class ProviderConfig(BaseModel):
    """Configuration for a single fallback provider."""

    enabled: bool = False
    default_model: str = ""
    base_url: str = ""


class ProvidersTable(BaseModel):
    """The [providers] table from judges.toml."""

    groq: ProviderConfig = Field(default_factory=ProviderConfig)
    ollama: ProviderConfig = Field(default_factory=ProviderConfig)


class ScheduleConfig(BaseModel):
    """The [schedule] table. weekday follows datetime.weekday() (Monday=0, Sunday=6)."""

    weekday: int = Field(default=6, ge=0, le=6)
    hour: int = Field(default=2, ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)
    timezone: str = "America/New_York"
    alert_interval_minutes: int = Field(default=60, ge=1)


class AlertsConfig(BaseModel):
    """The [alerts] table from judges.toml."""

    recipient: str = "security-team@yourcompany.com"
    subject: str = "CRITICAL: Agent Safety Issue Detected"
    body: str = (
        "One or more agent responses have been flagged as CRITICAL by the "
        "LLM-as-a-judge evaluation. Please review immediately in the "
        "evaluation_results table."
    )


class PipelineSettings(BaseModel):
    """Configuration loaded from judges.toml."""

    defaults: DefaultsTable = Field(default_factory=DefaultsTable)
    judges: JudgesTable = Field(default_factory=JudgesTable)
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    providers: ProvidersTable = Field(default_factory=ProvidersTable)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)

    def get_judge_config(self, judge_name: str) -> JudgeConfig:
        """Get the config for a specific judge."""
        return getattr(self.judges, judge_name, JudgeConfig())

    def get_model(self, judge_name: str) -> str:
        """Get the resolved model for a judge (judge-specific > defaults)."""
        return self.get_judge_config(judge_name).model or self.defaults.model

    def get_temperature(self, judge_name: str) -> float:
        """Get the resolved temperature for a judge."""
        judge_cfg = self.get_judge_config(judge_name)
        if judge_cfg.temperature is not None:
            return judge_cfg.temperature
        return self.defaults.temperature

    def get_groq_model(self, judge_name: str) -> str:
        """Get Groq model: judge-specific > providers.groq.default_model."""
        return (
            self.get_judge_config(judge_name).groq_model
            or self.providers.groq.default_model
        )

    def get_ollama_model(self, judge_name: str) -> str:
        """Get Ollama model: judge-specific > providers.ollama.default_model."""
        return (
            self.get_judge_config(judge_name).ollama_model
            or self.providers.ollama.default_model
        )


_PIPELINE_SETTINGS_CACHE: PipelineSettings | None = None

TOML_PATH = Path(__file__).parent.parent / "judges.toml"


def load_pipeline_settings(path: str | Path) -> PipelineSettings:
    """Parse a judges.toml file without touching the cache."""
    with open(path, "rb") as f:
        data = tomllib.load(f)
    return PipelineSettings.model_validate(data)


def get_pipeline_settings() -> PipelineSettings:
    """Load and cache pipeline settings from judges.toml."""
    global _PIPELINE_SETTINGS_CACHE
    if _PIPELINE_SETTINGS_CACHE is not None:
        return _PIPELINE_SETTINGS_CACHE

    if TOML_PATH.exists():
        _PIPELINE_SETTINGS_CACHE = load_pipeline_settings(TOML_PATH)
    else:
        _PIPELINE_SETTINGS_CACHE = PipelineSettings()

    return _PIPELINE_SETTINGS_CACHE


# ---------------------------------------------------------------------------
# Environment settings from .env (API keys, secrets, env-var overrides)
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Judge backend (OpenAI-compatible endpoint). Only `run` and `schedule`
    # need the key; alert-check, report and import work without it.
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    groq_api_key: str = ""  # Optional Groq fallback provider

    # Storage: SQLite path or postgresql:// URL
    database_url: str = "data/evaluations.db"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Alert delivery (all optional; LogNotifier is used when unset)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_sender: str = "judge-audit@localhost"
    alert_webhook_url: str = ""

    # Metrics: textfile for node_exporter after run/alert-check, HTTP port for `schedule`
    metrics_textfile: str = ""
    metrics_port: int = 0


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
