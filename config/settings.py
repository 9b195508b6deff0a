"""
Paperscribe — Configuration
All secrets loaded from environment variables.
Copy .env.example → config/.env and fill in your credentials.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Load .env before any os.getenv() calls in dataclass defaults
_ENV_PATH = Path(__file__).parent / ".env"
load_dotenv(_ENV_PATH, override=True)


class ConfigurationError(Exception):
    """Missing or invalid configuration (credentials, provider name)."""


def _yes(name: str, default: str = "no") -> bool:
    return os.getenv(name, default).strip().lower() in ("yes", "true", "1")


def _csv(name: str, default: str = "") -> List[str]:
    return [v.strip() for v in os.getenv(name, default).split(",") if v.strip()]


SUPPORTED_PROVIDERS = ("openai", "ollama", "azure", "custom")


@dataclass
class ArchiveConfig:
    api_url: str = os.getenv("PAPERLESS_API_URL", "").rstrip("/")
    api_token: str = os.getenv("PAPERLESS_API_TOKEN", "")
    timeout: float = 30.0
    page_size: int = 100
    # Tag lookups are cached this long before a refresh
    tag_cache_seconds: int = 30


@dataclass
class AIConfig:
    provider: str = os.getenv("AI_PROVIDER", "openai").strip().lower()
    # OpenAI
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    # Ollama
    ollama_api_url: str = os.getenv("OLLAMA_API_URL", "http://localhost:11434").rstrip("/")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "llama3.2")
    # Azure OpenAI
    azure_endpoint: str = os.getenv("AZURE_ENDPOINT", "").rstrip("/")
    azure_api_key: str = os.getenv("AZURE_API_KEY", "")
    azure_deployment: str = os.getenv("AZURE_DEPLOYMENT_NAME", "")
    azure_api_version: str = os.getenv("AZURE_API_VERSION", "2024-08-01-preview")
    # Any OpenAI-compatible endpoint
    custom_base_url: str = os.getenv("CUSTOM_BASE_URL", "").rstrip("/")
    custom_api_key: str = os.getenv("CUSTOM_API_KEY", "")
    custom_model: str = os.getenv("CUSTOM_MODEL", "")
    # Token budget
    token_limit: int = int(os.getenv("TOKEN_LIMIT", "0"))  # 0 = use model table
    reserved_response_tokens: int = int(os.getenv("RESPONSE_TOKENS", "1000"))
    temperature: float = 0.3
    # Timeouts (seconds); local models are slow
    request_timeout: float = 120.0
    ollama_timeout: float = 1800.0

    @property
    def model(self) -> str:
        """Model (or deployment) name of the active provider."""
        return {
            "openai": self.openai_model,
            "ollama": self.ollama_model,
            "azure": self.azure_deployment,
            "custom": self.custom_model,
        }.get(self.provider, "")

    def validate(self):
        """Raise ConfigurationError when the active provider lacks credentials."""
        if self.provider not in SUPPORTED_PROVIDERS:
            raise ConfigurationError(
                f"Unknown AI_PROVIDER '{self.provider}' "
                f"(expected one of: {', '.join(SUPPORTED_PROVIDERS)})"
            )
        missing = []
        if self.provider == "openai" and not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        elif self.provider == "ollama" and not self.ollama_api_url:
            missing.append("OLLAMA_API_URL")
        elif self.provider == "azure":
            for name, value in (
                ("AZURE_ENDPOINT", self.azure_endpoint),
                ("AZURE_API_KEY", self.azure_api_key),
                ("AZURE_DEPLOYMENT_NAME", self.azure_deployment),
            ):
                if not value:
                    missing.append(name)
        elif self.provider == "custom":
            for name, value in (
                ("CUSTOM_BASE_URL", self.custom_base_url),
                ("CUSTOM_MODEL", self.custom_model),
            ):
                if not value:
                    missing.append(name)
        if missing:
            raise ConfigurationError(
                f"{self.provider} provider is missing: {', '.join(missing)}"
            )


@dataclass
class PromptConfig:
    system_prompt: str = os.getenv("SYSTEM_PROMPT", "")
    use_prompt_tags: bool = _yes("USE_PROMPT_TAGS")
    prompt_tags: List[str] = field(default_factory=lambda: _csv("PROMPT_TAGS"))
    custom_fields: List[str] = field(default_factory=lambda: _csv("CUSTOM_FIELDS"))


@dataclass
class FeatureFlags:
    tagging: bool = _yes("ACTIVATE_TAGGING", "yes")
    correspondents: bool = _yes("ACTIVATE_CORRESPONDENTS", "yes")
    document_type: bool = _yes("ACTIVATE_DOCUMENT_TYPE", "yes")
    title: bool = _yes("ACTIVATE_TITLE", "yes")
    custom_fields: bool = _yes("ACTIVATE_CUSTOM_FIELDS", "yes")
    add_ai_processed_tag: bool = _yes("ADD_AI_PROCESSED_TAG")
    ai_processed_tag_name: str = os.getenv("AI_PROCESSED_TAG_NAME", "ai-processed")

    @property
    def marker_tag(self) -> str:
        """Name of the AI-processed marker tag, or "" when disabled."""
        if self.add_ai_processed_tag and self.ai_processed_tag_name.strip():
            return self.ai_processed_tag_name.strip()
        return ""


@dataclass
class ScanConfig:
    # Crontab expression for the scheduled full scan
    interval: str = os.getenv("SCAN_INTERVAL", "*/30 * * * *")
    run_on_startup: bool = _yes("SCAN_ON_STARTUP", "yes")
    # Only scan documents carrying one of these tags
    process_predefined_documents: bool = _yes("PROCESS_PREDEFINED_DOCUMENTS")
    tags: List[str] = field(default_factory=lambda: _csv("TAGS"))
    content_max_length: int = int(os.getenv("CONTENT_MAX_LENGTH", "50000"))
    min_content_length: int = 10
    webhook_queue_size: int = int(os.getenv("WEBHOOK_QUEUE_SIZE", "100"))


@dataclass
class ChatConfig:
    max_sessions: int = int(os.getenv("CHAT_MAX_SESSIONS", "100"))
    idle_timeout: int = int(os.getenv("CHAT_IDLE_TIMEOUT", "3600"))  # seconds
    temperature: float = 0.7


@dataclass
class PostgresConfig:
    host: str = os.getenv("POSTGRES_HOST", "localhost")
    port: int = int(os.getenv("POSTGRES_PORT", "5432"))
    database: str = os.getenv("POSTGRES_DB", "paperscribe")
    user: str = os.getenv("POSTGRES_USER", "paperscribe")
    password: str = os.getenv("POSTGRES_PASSWORD", "")
    sslmode: str = os.getenv("POSTGRES_SSLMODE", "prefer")

    @property
    def dsn_params(self) -> dict:
        """Return connection params dict for psycopg2."""
        params = {
            "host": self.host,
            "port": self.port,
            "dbname": self.database,
            "user": self.user,
            "password": self.password,
        }
        if self.sslmode and self.sslmode != "disable":
            params["sslmode"] = self.sslmode
        return params


@dataclass
class ScribeConfig:
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    prompts: PromptConfig = field(default_factory=PromptConfig)
    features: FeatureFlags = field(default_factory=FeatureFlags)
    scan: ScanConfig = field(default_factory=ScanConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    postgres: PostgresConfig = field(default_factory=PostgresConfig)
    api_key: str = os.getenv("SCRIBE_API_KEY", "")
    debug: bool = _yes("SCRIBE_DEBUG", "false")

    def validate(self):
        """Raise ConfigurationError if the service cannot start."""
        if not self.archive.api_url or not self.archive.api_token:
            raise ConfigurationError("PAPERLESS_API_URL and PAPERLESS_API_TOKEN are required")
        self.ai.validate()


# Global config instance
config = ScribeConfig()
