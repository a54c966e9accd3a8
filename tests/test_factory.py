"""
Tests for backend creation and selection.
"""

import os
from unittest.mock import AsyncMock, patch

import pytest

from majordomo.config import BackendConfig, Settings
from majordomo.errors import ConfigurationError
from majordomo.llm import (
    AnthropicLLM,
    ClaudeCodeLLM,
    OllamaLLM,
    OpenAILLM,
    create_llm,
    select_backend,
)


def _settings(**overrides) -> Settings:
    with patch.dict(os.environ, {}, clear=True):
        return Settings(_env_file=None, **overrides)


def test_create_llm_routes_by_kind():
    """Test backend creation per kind."""
    assert isinstance(create_llm(BackendConfig(backend_kind="anthropic", credential="k")), AnthropicLLM)
    assert isinstance(create_llm(BackendConfig(backend_kind="openai", credential="k")), OpenAILLM)
    assert isinstance(create_llm(BackendConfig(backend_kind="ollama")), OllamaLLM)

    claude_code = create_llm(BackendConfig(backend_kind="claude-code", endpoint="/usr/local/bin/claude"))
    assert isinstance(claude_code, ClaudeCodeLLM)
    assert claude_code.cli_path == "/usr/local/bin/claude"


def test_create_llm_requires_api_key():
    """Test hosted backends require an API key."""
    with pytest.raises(ConfigurationError, match="requires an API key"):
        create_llm(BackendConfig(backend_kind="anthropic"))
    with pytest.raises(ConfigurationError, match="requires an API key"):
        create_llm(BackendConfig(backend_kind="openai"))


def test_create_llm_applies_model_and_endpoint():
    """Test model and endpoint overrides."""
    llm = create_llm(BackendConfig(backend_kind="ollama", model="qwen2.5", endpoint="http://gpu-box:11434/"))

    assert llm.model == "qwen2.5"
    assert llm.base_url == "http://gpu-box:11434"


@pytest.mark.asyncio
async def test_explicit_config_wins():
    """Test explicit config skips environment probing."""
    settings = _settings(anthropic_api_key="sk-ant")

    llm = await select_backend(BackendConfig(backend_kind="ollama"), settings)

    assert isinstance(llm, OllamaLLM)


@pytest.mark.asyncio
async def test_default_backend_setting_skips_probing():
    """Test DEFAULT_BACKEND counts as explicit config."""
    settings = _settings(default_backend="OpenAI", openai_api_key="sk-oai", anthropic_api_key="sk-ant")

    llm = await select_backend(settings=settings)

    assert isinstance(llm, OpenAILLM)


@pytest.mark.asyncio
async def test_anthropic_key_preferred_over_openai():
    """Test Anthropic key wins over OpenAI key."""
    settings = _settings(anthropic_api_key="sk-ant", openai_api_key="sk-oai")

    assert isinstance(await select_backend(settings=settings), AnthropicLLM)


@pytest.mark.asyncio
async def test_openai_key_used_without_anthropic():
    """Test OpenAI key used when no Anthropic key."""
    settings = _settings(openai_api_key="sk-oai")

    assert isinstance(await select_backend(settings=settings), OpenAILLM)


@pytest.mark.asyncio
async def test_ollama_probe_before_claude_code():
    """Test Ollama is probed before the CLI."""
    with patch.object(OllamaLLM, "is_configured", AsyncMock(return_value=True)), \
            patch.object(ClaudeCodeLLM, "is_configured", AsyncMock(return_value=True)) as cli_probe:
        llm = await select_backend(settings=_settings())

    assert isinstance(llm, OllamaLLM)
    cli_probe.assert_not_awaited()


@pytest.mark.asyncio
async def test_claude_code_when_ollama_down():
    """Test CLI backend when Ollama is down."""
    with patch.object(OllamaLLM, "is_configured", AsyncMock(return_value=False)), \
            patch.object(ClaudeCodeLLM, "is_configured", AsyncMock(return_value=True)):
        llm = await select_backend(settings=_settings(claude_cli_path="/opt/claude"))

    assert isinstance(llm, ClaudeCodeLLM)
    assert llm.cli_path == "/opt/claude"


@pytest.mark.asyncio
async def test_nothing_available_names_every_option():
    """Test error message lists every backend tried."""
    with patch.object(OllamaLLM, "is_configured", AsyncMock(return_value=False)), \
            patch.object(ClaudeCodeLLM, "is_configured", AsyncMock(return_value=False)):
        with pytest.raises(ConfigurationError) as exc_info:
            await select_backend(settings=_settings())

    message = str(exc_info.value)
    for option in ("anthropic", "openai", "ollama", "claude-code"):
        assert option in message
