"""Error taxonomy shared by the orchestration pipeline and the API."""

from typing import Any, Optional

SECRET_KEYS = ("api_key", "apikey", "openai_api_key", "google_genai_api_key", "anthropic_api_key", "token", "authorization")


class ChatError(Exception):
    """Base class for every error the pipeline reports to a caller."""

    code = "INTERNAL_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Render as the structured `{error, code, details?}` body."""
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(ChatError):
    """Request body has the wrong shape."""

    code = "VALIDATION_ERROR"
    status_code = 400


class Unauthorized(ChatError):
    """No caller identity could be resolved."""

    code = "UNAUTHORIZED"
    status_code = 401


class UnsupportedModel(ChatError):
    """Unknown or misconfigured model id."""

    code = "UNSUPPORTED_MODEL"
    status_code = 400

    def __init__(self, model_id: str, supported_models: Optional[list[str]] = None):
        super().__init__(f"Model '{model_id}' is not supported")
        self.model_id = model_id
        self.supported_models = supported_models or []

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["supportedModels"] = self.supported_models
        return body


class ConfigurationError(ChatError):
    """No usable backend credentials for this process."""

    code = "CONFIGURATION_ERROR"
    status_code = 500


class NotFound(ChatError):
    """Conversation does not exist for the calling user."""

    code = "CONVERSATION_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Conversation not found"):
        super().__init__(message)


def error_code(exc: BaseException) -> str:
    """Code for an arbitrary exception, `INTERNAL_ERROR` if it is not a ChatError."""
    if isinstance(exc, ChatError):
        return exc.code
    return ChatError.code


def sanitize_for_logging(obj: Any) -> Any:
    """Return a copy of `obj` with secret-looking keys redacted."""
    if isinstance(obj, dict):
        sanitized = {}
        for key, value in obj.items():
            if any(secret in str(key).lower() for secret in SECRET_KEYS):
                sanitized[key] = "[REDACTED]"
            else:
                sanitized[key] = sanitize_for_logging(value)
        return sanitized
    if isinstance(obj, list):
        return [sanitize_for_logging(item) for item in obj]
    return obj
