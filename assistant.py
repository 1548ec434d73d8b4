"""
assistant.py – Turn a generation prompt into test-case JSON.

Three responders fill the response artifact the orchestrator waits on:

  • ClaudeCliResponder – local ``claude`` CLI, prompt piped on stdin
  • LLMResponder       – direct API call, multi-provider
      – OpenAI, Groq, DeepSeek, Mistral, Together AI, Google Gemini,
        Ollama, LM Studio, any custom OpenAI-compatible endpoint
        → routed through the `openai` SDK
      – Anthropic Claude → routed through the native `anthropic` SDK
      – Azure OpenAI → the `openai` SDK's AzureOpenAI client
  • ManualResponder    – a human relays the prompt to any AI surface and
                         pastes the JSON back into the response file

RESPONDER_MODE selects one; ``auto`` prefers the CLI when it is installed.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Any, Callable, Optional

import anthropic
from openai import AzureOpenAI, OpenAI, OpenAIError

from checkpoint import wait_for_file
from config import Settings
from errors import AssistantError, ConfigurationError, ErrorCode

logger = logging.getLogger("sprint-testgen")

SYSTEM_PROMPT = """\
You are a Senior QA Engineer writing manual test cases for BrowserStack
Test Management.  Follow the product rules and the output format given in
the request exactly.  Return ONLY the JSON requested.  No explanation, no
markdown.
"""

_FENCED_JSON_RE = re.compile(r"```(?:json)?\n([\s\S]*?)\n```")


def extract_json_block(text: str) -> str:
    """Return the contents of a fenced code block, else the trimmed text."""
    text = text.strip()
    match = _FENCED_JSON_RE.search(text)
    return match.group(1).strip() if match else text


class Responder:
    """Fills *response_path* with the answer to *prompt*."""

    name = "responder"
    automatic = True

    def is_available(self) -> bool:
        return True

    def status_message(self) -> str:
        return f"{self.name} responder ready."

    def generate(self, prompt: str) -> str:
        raise NotImplementedError

    def respond(
        self,
        prompt: str,
        prompt_path: Path,
        response_path: Path,
        timeout: Optional[float] = None,
    ) -> Path:
        text = self.generate(prompt)
        response_path.parent.mkdir(parents=True, exist_ok=True)
        response_path.write_text(text, encoding="utf-8")
        logger.info("Response written to %s (%d chars)", response_path, len(text))
        return response_path


# ── Claude CLI ──────────────────────────────────────────────────────────

class ClaudeCliResponder(Responder):
    """Runs the local Claude CLI; uses the operator's own subscription."""

    name = "claude_cli"

    def __init__(self, command: str | None = None, timeout: float | None = None) -> None:
        self._argv = shlex.split(command or Settings.CLAUDE_CLI_CMD)
        if not self._argv:
            raise ConfigurationError("CLAUDE_CLI_CMD is empty")
        self._timeout = timeout if timeout is not None else Settings.CLAUDE_CLI_TIMEOUT_SEC

    def is_available(self) -> bool:
        return shutil.which(self._argv[0]) is not None

    def status_message(self) -> str:
        if self.is_available():
            return "Claude CLI is installed. Using local Claude (your subscription, no extra cost)."
        return "Claude CLI not found. Install with: npm install -g @anthropic-ai/claude-code"

    def generate(self, prompt: str) -> str:
        if not self.is_available():
            raise AssistantError(
                "Claude CLI not installed. Please install with: "
                "npm install -g @anthropic-ai/claude-code",
                ErrorCode.CLAUDE_CLI_UNAVAILABLE,
            )

        env = dict(os.environ)
        env.pop("ANTHROPIC_API_KEY", None)
        cmd = [*self._argv, "-p", "--tools", ""]
        logger.info("Sending prompt to Claude CLI (%d chars)…", len(prompt))
        try:
            proc = subprocess.run(
                cmd,
                input=prompt,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                env=env,
            )
        except subprocess.TimeoutExpired as exc:
            raise AssistantError(f"Claude CLI timeout after {self._timeout:g}s") from exc
        except OSError as exc:
            raise AssistantError(f"Claude CLI execution failed: {exc}") from exc

        stdout = proc.stdout or ""
        stderr = (proc.stderr or "").strip()
        if proc.returncode != 0:
            if "Invalid API key" in stdout or "Invalid API key" in stderr:
                raise AssistantError(
                    "Claude CLI authentication failed. Please ensure Claude CLI is "
                    'properly authenticated with "claude login"',
                    ErrorCode.CLAUDE_CLI_UNAVAILABLE,
                )
            raise AssistantError(f"Claude CLI failed: {stderr or f'exit code {proc.returncode}'}")
        if stderr:
            logger.debug("Claude CLI stderr: %s", stderr)
        if not stdout.strip():
            raise AssistantError("Claude CLI returned empty response", ErrorCode.INVALID_RESPONSE)

        return extract_json_block(stdout)


# ── Direct LLM API ──────────────────────────────────────────────────────

def _call_openai_compatible(client: OpenAI, model: str, user_msg: str) -> str:
    """Shared call logic for OpenAI and every OpenAI-compatible provider."""
    response = client.chat.completions.create(
        model=model,
        temperature=0.2,
        messages=[
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_msg},
        ],
    )
    return response.choices[0].message.content or ""


def _call_anthropic(client: Any, model: str, user_msg: str) -> str:
    """Call Anthropic's native messages API."""
    response = client.messages.create(
        model=model,
        max_tokens=8192,
        temperature=0.2,
        system=SYSTEM_PROMPT,
        messages=[{"role": "user", "content": user_msg}],
    )
    return response.content[0].text


class LLMResponder(Responder):
    """Calls the configured LLM provider directly."""

    name = "llm"

    def __init__(self, client: Any = None, provider: str | None = None, model: str | None = None) -> None:
        provider = provider or Settings.LLM_PROVIDER

        if client is not None:
            self._provider = "anthropic" if provider == "anthropic" else "openai_compat"
            self._client = client
            self._model = model or Settings.LLM_MODEL

        elif provider == "azure_openai":
            self._provider = "openai_compat"
            self._client = AzureOpenAI(
                azure_endpoint=Settings.AZURE_OPENAI_ENDPOINT,
                api_key=Settings.AZURE_OPENAI_API_KEY,
                api_version=Settings.AZURE_OPENAI_API_VERSION,
            )
            self._model = model or Settings.AZURE_OPENAI_DEPLOYMENT
            logger.info("LLM provider: Azure OpenAI  (deployment=%s)", self._model)

        elif provider == "anthropic":
            self._provider = "anthropic"
            self._client = anthropic.Anthropic(api_key=Settings.LLM_API_KEY)
            self._model = model or Settings.LLM_MODEL
            logger.info("LLM provider: Anthropic  (model=%s)", self._model)

        else:
            self._provider = "openai_compat"
            base_url = Settings.resolved_base_url()
            kwargs: dict[str, Any] = {"api_key": Settings.LLM_API_KEY}
            if base_url:
                kwargs["base_url"] = base_url
            self._client = OpenAI(**kwargs)
            self._model = model or Settings.LLM_MODEL
            label = provider if provider != "openai" else "OpenAI"
            logger.info(
                "LLM provider: %s  (model=%s%s)",
                label,
                self._model,
                f", base_url={base_url}" if base_url else "",
            )

    def status_message(self) -> str:
        return f"Using {Settings.LLM_PROVIDER} API (model={self._model})."

    def generate(self, prompt: str) -> str:
        logger.info("Sending prompt to LLM (%d chars)…", len(prompt))
        try:
            if self._provider == "anthropic":
                raw = _call_anthropic(self._client, self._model, prompt)
            else:
                raw = _call_openai_compatible(self._client, self._model, prompt)
        except (anthropic.APIError, OpenAIError) as exc:
            raise AssistantError(f"LLM call failed: {exc}") from exc
        logger.debug("LLM response length: %d chars", len(raw))
        if not raw.strip():
            raise AssistantError("LLM returned empty response", ErrorCode.INVALID_RESPONSE)
        return extract_json_block(raw)


# ── Human relay ─────────────────────────────────────────────────────────

class ManualResponder(Responder):
    """A person copies the prompt into an AI surface and saves the answer.

    *signal* is called once the artifacts are in place and should block
    until the operator says the response file is saved (the command
    surface asks for Enter).  Without a signal the responder only polls the
    file until *timeout*.
    """

    name = "manual"
    automatic = False

    def __init__(
        self,
        signal: Optional[Callable[[Path, Path], None]] = None,
        poll_interval: float | None = None,
    ) -> None:
        self._signal = signal
        self._interval = poll_interval if poll_interval is not None else Settings.FILE_POLL_INTERVAL_SEC

    def status_message(self) -> str:
        return "Manual mode: copy the prompt into Claude and save the JSON response."

    def generate(self, prompt: str) -> str:
        raise AssistantError(
            "Manual mode cannot generate responses automatically",
            ErrorCode.CLAUDE_CLI_UNAVAILABLE,
        )

    def respond(
        self,
        prompt: str,
        prompt_path: Path,
        response_path: Path,
        timeout: Optional[float] = None,
    ) -> Path:
        logger.info("Prompt ready: %s", prompt_path)
        logger.info("Paste the JSON response into: %s", response_path)
        if self._signal is not None:
            self._signal(prompt_path, response_path)
        return wait_for_file(response_path, timeout, self._interval)


def build_responder(
    mode: str | None = None,
    signal: Optional[Callable[[Path, Path], None]] = None,
) -> Responder:
    """Pick the responder for *mode* (``auto`` | ``claude_cli`` | ``llm`` | ``manual``)."""
    mode = (mode or Settings.RESPONDER_MODE).lower().strip()
    if mode == "manual":
        return ManualResponder(signal)
    if mode == "llm":
        return LLMResponder()
    if mode == "claude_cli":
        return ClaudeCliResponder()
    if mode == "auto":
        cli = ClaudeCliResponder()
        if cli.is_available():
            logger.info("Claude CLI detected – automatic mode")
            return cli
        logger.info("Claude CLI not found – manual mode")
        return ManualResponder(signal)
    raise ConfigurationError(f"Unknown responder mode '{mode}'")
