"""
config.py – Centralised configuration loaded from environment variables.
"""

import os
import sys
from dotenv import load_dotenv

load_dotenv()

VALID_RESPONDER_MODES = {"auto", "claude_cli", "llm", "manual"}

VALID_PROVIDERS = {
    "openai", "anthropic", "azure_openai",
    "groq", "deepseek", "mistral", "together",
    "google", "ollama", "lmstudio", "custom",
}

PROVIDER_BASE_URLS = {
    "groq": "https://api.groq.com/openai/v1",
    "deepseek": "https://api.deepseek.com",
    "mistral": "https://api.mistral.ai/v1",
    "together": "https://api.together.xyz/v1",
    "google": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "ollama": "http://localhost:11434/v1",
    "lmstudio": "http://localhost:1234/v1",
}


class Settings:
    """Validated, read-only application settings."""

    # ── Jira ────────────────────────────────────────────────
    JIRA_BASE_URL: str = os.getenv("JIRA_BASE_URL", "")
    JIRA_EMAIL: str = os.getenv("JIRA_EMAIL", "")
    JIRA_API_TOKEN: str = os.getenv("JIRA_API_TOKEN", "")
    JIRA_ROOT_CAUSE_FIELD: str = os.getenv("JIRA_ROOT_CAUSE_FIELD", "customfield_10037")
    JIRA_TEST_DESCRIPTION_FIELD: str = os.getenv(
        "JIRA_TEST_DESCRIPTION_FIELD", "customfield_10038"
    )
    JIRA_SPRINT_FIELD: str = os.getenv("JIRA_SPRINT_FIELD", "customfield_10000")

    # ── BrowserStack Test Management ────────────────────────
    BROWSERSTACK_USERNAME: str = os.getenv("BROWSERSTACK_USERNAME", "")
    BROWSERSTACK_ACCESS_KEY: str = os.getenv("BROWSERSTACK_ACCESS_KEY", "")
    BROWSERSTACK_PROJECT_ID: str = os.getenv("BROWSERSTACK_PROJECT_ID", "")
    BROWSERSTACK_BASE_URL: str = os.getenv(
        "BROWSERSTACK_BASE_URL", "https://test-management.browserstack.com/api/v2"
    )

    # ── Generation ──────────────────────────────────────────
    AI_MIN_TEST_CASES: int = int(os.getenv("AI_MIN_TEST_CASES", "2"))
    AI_MAX_TEST_CASES: int = int(os.getenv("AI_MAX_TEST_CASES", "5"))
    AI_BATCH_SIZE: int = int(os.getenv("AI_BATCH_SIZE", "20"))

    # ── Responder ───────────────────────────────────────────
    RESPONDER_MODE: str = os.getenv("RESPONDER_MODE", "auto").lower().strip()
    CLAUDE_CLI_CMD: str = os.getenv("CLAUDE_CLI_CMD", "claude")
    CLAUDE_CLI_TIMEOUT_SEC: float = float(os.getenv("CLAUDE_CLI_TIMEOUT_SEC", "120"))

    # ── LLM (only when RESPONDER_MODE=llm) ──────────────────
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "anthropic").lower().strip()
    LLM_API_KEY: str = os.getenv("LLM_API_KEY", "")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "claude-sonnet-4-5")
    LLM_BASE_URL: str = os.getenv("LLM_BASE_URL", "")

    AZURE_OPENAI_ENDPOINT: str = os.getenv("AZURE_OPENAI_ENDPOINT", "")
    AZURE_OPENAI_API_KEY: str = os.getenv("AZURE_OPENAI_API_KEY", "")
    AZURE_OPENAI_DEPLOYMENT: str = os.getenv("AZURE_OPENAI_DEPLOYMENT", "")
    AZURE_OPENAI_API_VERSION: str = os.getenv(
        "AZURE_OPENAI_API_VERSION", "2024-02-15-preview"
    )

    # ── Files ───────────────────────────────────────────────
    RULES_CONFIG_PATH: str = os.getenv("RULES_CONFIG_PATH", "config/rules.config.json")
    FOLDERS_CONFIG_PATH: str = os.getenv("FOLDERS_CONFIG_PATH", "config/folders.config.json")
    OUTPUT_DIR: str = os.getenv("OUTPUT_DIR", "output")
    ERROR_LOG_DIR: str = os.getenv("ERROR_LOG_DIR", "errors")
    RESPONSE_TIMEOUT_SEC: float = float(os.getenv("RESPONSE_TIMEOUT_SEC", "60"))
    BATCH_RESPONSE_TIMEOUT_SEC: float = float(os.getenv("BATCH_RESPONSE_TIMEOUT_SEC", "30"))
    FILE_POLL_INTERVAL_SEC: float = float(os.getenv("FILE_POLL_INTERVAL_SEC", "2"))

    # ── Retry ───────────────────────────────────────────────
    RETRY_MAX_RETRIES: int = int(os.getenv("RETRY_MAX_RETRIES", "3"))
    RETRY_INITIAL_DELAY_SEC: float = float(os.getenv("RETRY_INITIAL_DELAY_SEC", "1.0"))
    RETRY_MAX_DELAY_SEC: float = float(os.getenv("RETRY_MAX_DELAY_SEC", "10.0"))
    RETRY_BACKOFF_MULTIPLIER: float = float(os.getenv("RETRY_BACKOFF_MULTIPLIER", "2"))

    # ── HTTP surface ────────────────────────────────────────
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "3000"))
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:5173")

    @classmethod
    def resolved_base_url(cls) -> str:
        """Return the effective base URL for OpenAI-compatible providers."""
        if cls.LLM_BASE_URL:
            return cls.LLM_BASE_URL
        return PROVIDER_BASE_URLS.get(cls.LLM_PROVIDER, "")

    @classmethod
    def validate(cls) -> None:
        """Halt early if required values are missing."""
        missing: list[str] = []
        if not cls.JIRA_BASE_URL:
            missing.append("JIRA_BASE_URL")
        if not cls.JIRA_EMAIL:
            missing.append("JIRA_EMAIL")
        if not cls.JIRA_API_TOKEN:
            missing.append("JIRA_API_TOKEN")
        if not cls.BROWSERSTACK_USERNAME:
            missing.append("BROWSERSTACK_USERNAME")
        if not cls.BROWSERSTACK_ACCESS_KEY:
            missing.append("BROWSERSTACK_ACCESS_KEY")
        if not cls.BROWSERSTACK_PROJECT_ID:
            missing.append("BROWSERSTACK_PROJECT_ID")

        if cls.RESPONDER_MODE not in VALID_RESPONDER_MODES:
            sys.exit(
                f"[ERROR] Unknown RESPONDER_MODE='{cls.RESPONDER_MODE}'.\n"
                f"  → Valid options: {', '.join(sorted(VALID_RESPONDER_MODES))}"
            )

        if cls.RESPONDER_MODE == "llm":
            if cls.LLM_PROVIDER not in VALID_PROVIDERS:
                sys.exit(
                    f"[ERROR] Unknown LLM_PROVIDER='{cls.LLM_PROVIDER}'.\n"
                    f"  → Valid options: {', '.join(sorted(VALID_PROVIDERS))}"
                )
            if cls.LLM_PROVIDER == "azure_openai":
                if not cls.AZURE_OPENAI_ENDPOINT:
                    missing.append("AZURE_OPENAI_ENDPOINT")
                if not cls.AZURE_OPENAI_API_KEY:
                    missing.append("AZURE_OPENAI_API_KEY")
                if not cls.AZURE_OPENAI_DEPLOYMENT:
                    missing.append("AZURE_OPENAI_DEPLOYMENT")
            elif cls.LLM_PROVIDER not in ("ollama", "lmstudio"):
                if not cls.LLM_API_KEY:
                    missing.append("LLM_API_KEY")

        if cls.AI_MIN_TEST_CASES > cls.AI_MAX_TEST_CASES:
            sys.exit(
                "[ERROR] AI_MIN_TEST_CASES must not exceed AI_MAX_TEST_CASES."
            )

        if missing:
            sys.exit(
                f"[ERROR] Missing required environment variables: {', '.join(missing)}\n"
                "  → Copy .env.example to .env and fill in all values."
            )
