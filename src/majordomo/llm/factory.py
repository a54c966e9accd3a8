"""
Backend factory and selector.

Supports: Anthropic Claude, OpenAI GPT, local Ollama, Claude Code CLI.
"""

import structlog

from ..config import BackendConfig, Settings, get_settings
from ..errors import ConfigurationError
from .anthropic import AnthropicLLM
from .base import BaseLLM
from .claude_code import ClaudeCodeLLM
from .ollama import OllamaLLM
from .openai import OpenAILLM

logger = structlog.get_logger()

# Environment probing order used by select_backend
PROBE_ORDER = ("anthropic", "openai", "ollama", "claude-code")


def create_llm(config: BackendConfig) -> BaseLLM:
    """Create a backend adapter from configuration.

    Backend routing:
    - anthropic -> AnthropicLLM (native Anthropic SDK)
    - openai -> OpenAILLM (native OpenAI SDK, any compatible endpoint)
    - ollama -> OllamaLLM (local daemon over HTTP)
    - claude-code -> ClaudeCodeLLM (local CLI subprocess)
    """
    kind = config.backend_kind

    if kind == "anthropic":
        if not config.credential:
            raise ConfigurationError("Anthropic backend requires an API key")
        return AnthropicLLM(
            api_key=config.credential,
            model=config.model,
            base_url=config.endpoint,
            max_tokens=config.max_tokens,
        )
    elif kind == "openai":
        if not config.credential:
            raise ConfigurationError("OpenAI backend requires an API key")
        return OpenAILLM(
            api_key=config.credential,
            model=config.model,
            base_url=config.endpoint,
            max_tokens=config.max_tokens,
        )
    elif kind == "ollama":
        return OllamaLLM(
            model=config.model,
            base_url=config.endpoint,
            max_tokens=config.max_tokens,
        )
    elif kind == "claude-code":
        return ClaudeCodeLLM(
            cli_path=config.endpoint or "claude",
            max_tokens=config.max_tokens,
        )
    else:
        raise ConfigurationError(f"Unknown backend: {kind}")


async def select_backend(
    config: BackendConfig | None = None,
    settings: Settings | None = None,
) -> BaseLLM:
    """Resolve the backend adapter to use.

    Resolution order:
    1. Explicit config (argument, then DEFAULT_BACKEND setting)
    2. ANTHROPIC_API_KEY present -> anthropic
    3. OPENAI_API_KEY present -> openai
    4. Ollama daemon answers its liveness probe -> ollama
    5. `claude --version` succeeds -> claude-code
    """
    if config is not None:
        logger.info("Using explicit backend config", backend=config.backend_kind)
        return create_llm(config)

    settings = settings or get_settings()

    if settings.default_backend:
        logger.info("Using configured default backend", backend=settings.default_backend)
        return create_llm(settings.get_backend_config(settings.default_backend))

    if settings.anthropic_api_key:
        logger.info("Selected backend from environment", backend="anthropic")
        return create_llm(settings.get_backend_config("anthropic"))

    if settings.openai_api_key:
        logger.info("Selected backend from environment", backend="openai")
        return create_llm(settings.get_backend_config("openai"))

    ollama = create_llm(settings.get_backend_config("ollama"))
    if await ollama.is_configured():
        logger.info("Selected backend from probe", backend="ollama")
        return ollama
    if isinstance(ollama, OllamaLLM):
        await ollama.aclose()

    claude_code = create_llm(settings.get_backend_config("claude-code"))
    if await claude_code.is_configured():
        logger.info("Selected backend from probe", backend="claude-code")
        return claude_code

    raise ConfigurationError(
        "No completion backend available. Tried: "
        "anthropic (ANTHROPIC_API_KEY not set), "
        "openai (OPENAI_API_KEY not set), "
        f"ollama (no daemon at {settings.ollama_base_url}), "
        f"claude-code ('{settings.claude_cli_path} --version' failed)"
    )
