"""Settings via pydantic-settings with CHATRELAY_ env prefix.

Upstream credentials use validation_alias to read the same unprefixed
env vars (AZURE_API_KEY, PARALLEL_API_KEY, etc.) that the hosting
platform injects, so a single .env file drives local and deployed runs.
"""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ReasoningEffort = Literal["low", "medium", "high"]

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant.\n\n"
    "Format your replies with Markdown to improve readability:\n"
    "- Use **bold** to emphasize key points\n"
    "- Use `code` for inline code and fenced blocks with a language for code\n"
    "- Organize content with headings (##, ###)\n"
    "- Use bulleted and numbered lists where appropriate\n"
    "- Use > for quotations\n"
    "- Use tables for structured data"
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CHATRELAY_", env_file=".env", extra="ignore")

    # Model provider -- unprefixed aliases match the hosting platform's env vars
    azure_api_key: str = Field("", validation_alias="AZURE_API_KEY")
    azure_endpoint: str = Field("", validation_alias="AZURE_ENDPOINT")
    azure_api_version: str = "2025-03-01-preview"

    # Models
    default_model: str = "gpt-5.2"
    default_reasoning_effort: ReasoningEffort = "medium"
    # Client-facing model id -> provider deployment name
    model_deployments: dict[str, str] = Field(
        default_factory=lambda: {"gpt-5.1": "gpt-5.1-PTU", "gpt-5.2": "gpt-5.2"},
    )
    max_output_tokens: int = 32000
    reasoning_summary: Literal["auto", "concise", "detailed"] = "concise"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    # Orchestration
    max_iterations: int = 10  # Max model calls per request

    # Title generation
    title_model: str = "gpt-5-nano"
    title_max_output_tokens: int = 1500

    # Web tools
    parallel_api_key: str = Field("", validation_alias="PARALLEL_API_KEY")
    jina_api_key: str = Field("", validation_alias="JINA_API_KEY")
    search_processor: str = "pro"
    web_fetch_max_chars: int = 100000

    # HTTP timeouts (seconds)
    api_timeout_connect: int = 10
    api_timeout_read: int = 300
    tool_timeout_read: int = 60

    # Runtime
    host: str = "0.0.0.0"
    port: int = 3002
    log_level: str = "info"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    @model_validator(mode="after")
    def _validate_limits(self) -> "Settings":
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        if self.max_output_tokens < 1:
            raise ValueError("max_output_tokens must be >= 1")
        return self

    @property
    def provider_configured(self) -> bool:
        return bool(self.azure_api_key and self.azure_endpoint)

    def deployment_for(self, model: str) -> str:
        """Map a client-facing model id to its deployment name (identity if unmapped)."""
        return self.model_deployments.get(model, model)
