from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from openai import OpenAIError

from assistant import (
    ClaudeCliResponder,
    LLMResponder,
    ManualResponder,
    build_responder,
    extract_json_block,
)
from errors import AssistantError, ConfigurationError, ErrorCode

PROMPT = "# Test Case Generation Request\n\n**Task ID:** PA-1\n"


def test_cli_generates_json() -> None:
    cli = ClaudeCliResponder()

    assert cli.is_available()
    cases = json.loads(cli.generate(PROMPT))
    assert cases[0]["name"] == "Generated case for PA-1"


def test_cli_does_not_forward_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")

    assert json.loads(ClaudeCliResponder().generate(PROMPT))


def test_cli_respond_writes_artifact(tmp_path: Path) -> None:
    target = tmp_path / "responses" / "response-PA-1.json"

    ClaudeCliResponder().respond(PROMPT, tmp_path / "prompt.md", target)

    assert json.loads(target.read_text(encoding="utf-8"))[0]["tags"] == ["fake"]


def test_cli_auth_failure() -> None:
    with pytest.raises(AssistantError, match="authentication failed") as exc_info:
        ClaudeCliResponder().generate(PROMPT + "FAIL_AUTH")
    assert exc_info.value.code is ErrorCode.CLAUDE_CLI_UNAVAILABLE


def test_cli_empty_output() -> None:
    with pytest.raises(AssistantError, match="empty response") as exc_info:
        ClaudeCliResponder().generate(PROMPT + "FAIL_EMPTY")
    assert exc_info.value.code is ErrorCode.INVALID_RESPONSE


def test_cli_missing_binary() -> None:
    cli = ClaudeCliResponder("definitely-not-installed-claude")

    assert not cli.is_available()
    assert "not found" in cli.status_message()
    with pytest.raises(AssistantError) as exc_info:
        cli.generate(PROMPT)
    assert exc_info.value.code is ErrorCode.CLAUDE_CLI_UNAVAILABLE


def test_empty_cli_command_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        ClaudeCliResponder("   ")


def test_extract_json_block() -> None:
    assert extract_json_block('Sure!\n```json\n[{"a": 1}]\n```\nDone') == '[{"a": 1}]'
    assert extract_json_block("  [1]  ") == "[1]"


# ── LLM ─────────────────────────────────────────────────────────────────

def test_llm_openai_compatible() -> None:
    client = MagicMock()
    client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="```json\n[]\n```"))]
    )

    assert LLMResponder(client=client, provider="openai", model="gpt-test").generate(PROMPT) == "[]"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-test"
    assert kwargs["messages"][1] == {"role": "user", "content": PROMPT}


def test_llm_anthropic() -> None:
    client = MagicMock()
    client.messages.create.return_value = SimpleNamespace(content=[SimpleNamespace(text="[]")])

    assert LLMResponder(client=client, provider="anthropic", model="claude-test").generate(PROMPT) == "[]"
    assert client.messages.create.call_args.kwargs["system"].startswith("You are a Senior QA Engineer")


def test_llm_errors_are_wrapped() -> None:
    client = MagicMock()
    client.chat.completions.create.side_effect = OpenAIError("quota exceeded")

    with pytest.raises(AssistantError, match="LLM call failed: quota exceeded") as exc_info:
        LLMResponder(client=client, provider="openai").generate(PROMPT)
    assert exc_info.value.code is ErrorCode.CLAUDE_API_ERROR


# ── Manual relay ────────────────────────────────────────────────────────

def test_manual_responder_waits_for_operator(tmp_path: Path) -> None:
    seen: list[tuple[Path, Path]] = []
    response = tmp_path / "response-PA-1.json"
    response.touch()

    def operator(prompt_path: Path, response_path: Path) -> None:
        seen.append((prompt_path, response_path))
        response_path.write_text("[]", encoding="utf-8")

    responder = ManualResponder(operator, poll_interval=0.01)

    assert responder.respond(PROMPT, tmp_path / "prompt.md", response, timeout=1) == response
    assert seen == [(tmp_path / "prompt.md", response)]
    assert responder.automatic is False


def test_manual_responder_cannot_generate() -> None:
    with pytest.raises(AssistantError):
        ManualResponder().generate(PROMPT)


def test_build_responder_modes() -> None:
    assert isinstance(build_responder("manual"), ManualResponder)
    assert isinstance(build_responder(" CLAUDE_CLI "), ClaudeCliResponder)
    assert isinstance(build_responder("auto"), ClaudeCliResponder)
    with pytest.raises(ConfigurationError, match="Unknown responder mode"):
        build_responder("carrier-pigeon")


def test_auto_falls_back_to_manual(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("config.Settings.CLAUDE_CLI_CMD", "definitely-not-installed-claude")

    assert isinstance(build_responder("auto"), ManualResponder)
