"""Observability configuration for Azure Monitor and OpenTelemetry.

Call configure_observability() before the FastAPI app is created so the
Azure Monitor distro can instrument incoming HTTP requests.

Span and log hygiene for consulting generation:
- Never put prompt text, streamed fragments, model output or uploaded file
  content into span attributes or log messages.
- Never record API keys; only whether a caller-supplied key was used.
- Safe attributes are model identifiers, counts, lengths, strategy names and
  error kinds.

For production (Azure):
- Set ENABLE_OBSERVABILITY=true and APPLICATIONINSIGHTS_CONNECTION_STRING.
- Install the optional `observability` extra (azure-monitor-opentelemetry).
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache

from opentelemetry import trace


logger = logging.getLogger(__name__)

# Environment variable names
_ENV_ENABLE_OBSERVABILITY = "ENABLE_OBSERVABILITY"
_ENV_APP_INSIGHTS_CONN_STRING = "APPLICATIONINSIGHTS_CONNECTION_STRING"
_ENV_OTEL_SERVICE_NAME = "OTEL_SERVICE_NAME"

_DEFAULT_SERVICE_NAME = "ai-master-architect-backend"

# Paths to exclude from automatic tracing (reduce noise for health checks)
EXCLUDED_URLS = "health,health/,favicon.ico"


def _is_observability_enabled() -> bool:
    """Return True if ENABLE_OBSERVABILITY holds a truthy value."""
    value = os.getenv(_ENV_ENABLE_OBSERVABILITY, "false").lower()
    return value in {"true", "1", "yes", "on"}


def _get_connection_string() -> str | None:
    return os.getenv(_ENV_APP_INSIGHTS_CONN_STRING)


@lru_cache
def configure_observability() -> bool:
    """Configure OpenTelemetry export to Azure Monitor.

    Returns:
        True if observability was configured successfully, False otherwise.

    Environment Variables:
        ENABLE_OBSERVABILITY: Set to "true" to enable (default: "false")
        APPLICATIONINSIGHTS_CONNECTION_STRING: Azure Monitor connection string
        OTEL_SERVICE_NAME: Service name for traces
            (default: "ai-master-architect-backend")
    """
    if not _is_observability_enabled():
        logger.info(
            "Observability disabled. Set %s=true to enable Azure Monitor.",
            _ENV_ENABLE_OBSERVABILITY,
        )
        return False

    connection_string = _get_connection_string()
    if not connection_string:
        logger.warning(
            "Observability enabled but %s not set. Skipping Azure Monitor setup.",
            _ENV_APP_INSIGHTS_CONN_STRING,
        )
        return False

    try:
        # Optional extra; only imported when enabled
        from azure.monitor.opentelemetry import configure_azure_monitor

        service_name = os.getenv(_ENV_OTEL_SERVICE_NAME, _DEFAULT_SERVICE_NAME)
        os.environ.setdefault(_ENV_OTEL_SERVICE_NAME, service_name)
        os.environ.setdefault("OTEL_PYTHON_FASTAPI_EXCLUDED_URLS", EXCLUDED_URLS)

        configure_azure_monitor(connection_string=connection_string)

        logger.info(
            "Azure Monitor observability configured for service '%s'",
            service_name,
        )
        return True

    except ImportError:
        logger.warning(
            "azure-monitor-opentelemetry package not installed. "
            "Install with: pip install 'ai-master-architect[observability]'"
        )
        return False
    except Exception as e:
        logger.exception("Failed to configure Azure Monitor observability: %s", e)
        return False


def get_tracer(name: str) -> trace.Tracer:
    """Get an OpenTelemetry tracer for custom spans.

    Without a configured provider the OpenTelemetry API hands back a proxy
    tracer whose spans are no-ops, so callers never need to check.

    Example:
        tracer = get_tracer(__name__)

        with tracer.start_as_current_span("consulting.fallback_generate") as span:
            span.set_attribute("consulting.model", model_identifier)
    """
    return trace.get_tracer(name)
