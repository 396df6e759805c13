"""
config.py — Central configuration for the tender clarification service.

Every tunable lives here: model names, token ceilings, truncation limits,
endpoint URLs and the parser policy. Defaults come from environment
variables (a local .env is loaded first) so the proxy and the analysis
pipeline read the same ANTHROPIC_* settings.

The truncation ceilings are character counts, not tokens. 15k chars for a
single document and 25k for a combined run keep the request comfortably
inside the model's context while leaving room for a 4-6k token reply.
"""

from dataclasses import dataclass, field
import os
import logging

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_ANTHROPIC_VERSION = "2023-06-01"


@dataclass
class LLMConfig:
    """
    Anthropic Messages API settings.

    `endpoint` can point straight at the provider or at our own proxy route
    (/api/anthropic/messages). When it points at the proxy leave the API key
    empty; the proxy adds it server-side.
    """
    endpoint: str = os.getenv(
        "ANTHROPIC_API_URL", "https://api.anthropic.com/v1/messages"
    )
    api_key: str = field(default=os.getenv("ANTHROPIC_API_KEY", ""), repr=False)
    api_version: str = os.getenv("ANTHROPIC_VERSION") or DEFAULT_ANTHROPIC_VERSION
    model: str = os.getenv("LLM_MODEL", "claude-sonnet-4-20250514")
    timeout: float = float(os.getenv("LLM_TIMEOUT", "60"))
    # 0 = no automatic retry. Failed runs are retried by the user.
    max_retries: int = int(os.getenv("LLM_MAX_RETRIES", "0"))
    retry_base_delay: float = 2.0


@dataclass
class PromptConfig:
    """Truncation ceilings and reply budgets per use case."""
    single_char_limit: int = 15_000
    multi_char_limit: int = 25_000
    single_max_tokens: int = 4000
    multi_max_tokens: int = 6000
    answer_max_tokens: int = 1000
    truncation_notice: str = "...(truncated)"


@dataclass
class ParserConfig:
    """
    Issue validation policy.

    Lenient drops a malformed entry and keeps the rest of the batch. Strict
    rejects the whole reply on the first bad entry.
    """
    strict: bool = os.getenv("PARSER_STRICT", "0") == "1"


@dataclass
class ProxyConfig:
    """Settings for the /api/anthropic/messages pass-through route."""
    upstream_url: str = "https://api.anthropic.com/v1/messages"
    port: int = int(os.getenv("PORT", "5000"))
    max_body_mb: int = 2


@dataclass
class Config:
    """Master config — instantiated once, used everywhere."""
    llm: LLMConfig = field(default_factory=LLMConfig)
    prompts: PromptConfig = field(default_factory=PromptConfig)
    parser: ParserConfig = field(default_factory=ParserConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)

    max_file_size_mb: int = 50
    accepted_mime_types: tuple = ("application/pdf",)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def __post_init__(self):
        """Fail fast on nonsense values instead of on the first upload."""
        if self.prompts.single_char_limit <= 0 or self.prompts.multi_char_limit <= 0:
            raise ValueError("Prompt character limits must be positive")
        if self.llm.timeout <= 0:
            raise ValueError(f"LLM timeout must be positive, got {self.llm.timeout}")
        if self.llm.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.llm.max_retries}")

        if self.prompts.multi_char_limit < self.prompts.single_char_limit:
            logger.warning(
                "Multi-document limit (%d) is below the single-document limit (%d). "
                "Combined runs will see less text than single runs.",
                self.prompts.multi_char_limit, self.prompts.single_char_limit,
            )


# Singleton — every module imports this same instance
config = Config()
