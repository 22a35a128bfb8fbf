"""Security configuration constants for the AI Master Architect API.

Centralizes the keys redacted from structured logs and the error fields that
each environment may expose.
"""

# Keys redacted from structured logs. Matching is a case-insensitive substring
# test, so "api_key" also covers "custom_api_key" and "x-api-key".
SENSITIVE_KEYS: set[str] = {
    # Credentials
    "password",
    "secret",
    "token",
    "authorization",
    "api_key",
    "key",
    "bearer",
    "cookie",
    "session_id",
    # Generation content: prompts, model output and uploads stay out of logs
    "user_request",
    "prompt",
    "fragment",
    "accumulated_text",
    "file_data",
    "attachment",
    # Personal data
    "email",
    "phone",
    "address",
}

# Production error responses only carry these fields
PRODUCTION_ERROR_FIELDS: set[str] = {
    "correlation_id",
    "type",
    "kind",
    "remediation",
}

DEVELOPMENT_ERROR_FIELDS: set[str] = PRODUCTION_ERROR_FIELDS | {
    "details",
    "traceback",
    "exception_type",
    "validation_errors",
}


def get_allowed_error_fields(environment: str) -> set[str]:
    """Get allowed error response fields based on environment.

    Args:
        environment: The application environment (production, development, etc.)

    Returns:
        Set of allowed field names for error responses
    """
    if environment == "production":
        return PRODUCTION_ERROR_FIELDS.copy()
    return DEVELOPMENT_ERROR_FIELDS.copy()


def is_sensitive_key(key: str) -> bool:
    """Check if a key should be redacted from logs."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in SENSITIVE_KEYS)
