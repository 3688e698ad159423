"""Centralised configuration for Vertex AI + LangChain + Firestore."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from google.cloud import aiplatform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    project: str | None
    location: str
    model_name: str
    company_name: str = "Rising Sun Computers"
    currency_symbol: str = "₹"
    max_tool_rounds: int = 8
    max_parallel_tools: int = 4
    service_account_key: str | None = None
    log_level: str = "INFO"


@dataclass(frozen=True)
class InitError:
    """Why an external service handle could not be created."""
    service: str
    message: str


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return max(1, int(raw))
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default


def load_settings(model_override: str | None = None) -> Settings:
    """Read settings from the environment; `model_override` wins over GENAI_MODEL."""
    return Settings(
        project=os.getenv("GCP_PROJECT") or None,
        location=os.getenv("GCP_LOCATION", "us-central1"),
        model_name=model_override or os.getenv("GENAI_MODEL", "gemini-2.5-pro"),
        company_name=os.getenv("COMPANY_NAME", "Rising Sun Computers"),
        currency_symbol=os.getenv("CURRENCY_SYMBOL", "₹"),
        max_tool_rounds=_int_env("ANALYST_MAX_TOOL_ROUNDS", 8),
        max_parallel_tools=_int_env("ANALYST_MAX_PARALLEL_TOOLS", 4),
        service_account_key=os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def init_vertex_ai(settings: Settings) -> InitError | None:
    """Initialise the Vertex SDK for this process. Returns an InitError instead of raising."""
    if not settings.project:
        return InitError(service="vertex-ai", message="GCP_PROJECT environment variable is not set. "
                                                      "Set it to the Google Cloud project that hosts Vertex AI.")
    try:
        aiplatform.init(project=settings.project, location=settings.location)
    except Exception as exc:  # the SDK raises auth and argument errors of several types
        logger.error("Vertex AI initialisation failed: %s", exc)
        return InitError(service="vertex-ai", message=f"Vertex AI initialisation failed: {exc}")
    logger.debug("Vertex AI initialised for %s/%s", settings.project, settings.location)
    return None

# pip install -e . &&
# gcloud auth application-default login &&
# export GCP_PROJECT=<your-project-id> &&
# sales-analyst ask "Which service sold the most last month?" --invoices invoices.json
