"""Centralized configuration for the SupportFlow agent.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/supportflow/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 - lazy import to avoid boto3 dep in tests

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/supportflow/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /supportflow/{name} (AWS)."
    )


# ── Language model ──────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
# Function-calling schema dialect the tool specs are rendered to
MODEL_PROVIDER: str = os.getenv("MODEL_PROVIDER", "anthropic")
MODEL_MAX_TOKENS: int = int(os.getenv("MODEL_MAX_TOKENS", "800"))
MODEL_TEMPERATURE: float = float(os.getenv("MODEL_TEMPERATURE", "0.2"))

# ── Embeddings (Cohere) ─────────────────────────────────────────────
COHERE_API_KEY: str = _require_env("COHERE_API_KEY")
COHERE_BASE_URL: str = os.getenv("COHERE_BASE_URL", "https://api.cohere.com")
EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "embed-english-v3.0")

# ── Agent behaviour ─────────────────────────────────────────────────
RETRIEVAL_TOP_K: int = int(os.getenv("RETRIEVAL_TOP_K", "3"))
HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "10"))
STREAM_CHUNK_DELAY_SECONDS: float = float(os.getenv("STREAM_CHUNK_DELAY_SECONDS", "0.03"))
REFUND_WINDOW_DEFAULT_DAYS: int = int(os.getenv("REFUND_WINDOW_DEFAULT_DAYS", "30"))
THREAD_MAX_AGE_DAYS: int = int(os.getenv("THREAD_MAX_AGE_DAYS", "30"))

# ── Storage ─────────────────────────────────────────────────────────
# "memory" keeps everything in-process (dev/tests); "mongo" is durable.
STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "memory").lower()
MONGODB_URI: str = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
MONGODB_DATABASE: str = os.getenv("MONGODB_DATABASE", "ai_store")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
# Set by the upstream auth proxy; never accepted from the request body.
IDENTITY_HEADER: str = os.getenv("IDENTITY_HEADER", "X-Authenticated-User")
