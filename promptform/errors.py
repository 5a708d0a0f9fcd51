from typing import Any, Dict, Optional


class PromptFormError(Exception):
    """
    Base error carrying the HTTP status it maps to and an optional payload
    merged into the error body.
    """

    status_code = 500
    kind = "internal_error"

    def __init__(self, message: str, *, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "type": self.kind}
        body.update(self.extra)
        return body


class ClientInputError(PromptFormError):
    status_code = 400
    kind = "invalid_input"


class SafetyRejected(PromptFormError):
    status_code = 400
    kind = "safety_blocked"

    def __init__(self, reason: str, message: str = "Prompt rejected for safety reasons."):
        super().__init__(
            message,
            extra={
                "reason": reason,
                "message": "Your request was blocked by the safety system. Please modify it and try again.",
            },
        )
        self.reason = reason


class UnsupportedDocument(PromptFormError):
    status_code = 400
    kind = "unsupported_document"


class EmptyDocument(PromptFormError):
    status_code = 400
    kind = "empty_document"


class CorruptDocument(PromptFormError):
    status_code = 400
    kind = "corrupt_document"


class UploadTooLarge(PromptFormError):
    status_code = 413
    kind = "upload_too_large"


class NotFound(PromptFormError):
    status_code = 404
    kind = "not_found"


class UpstreamEmpty(PromptFormError):
    status_code = 502
    kind = "upstream_empty"

    def __init__(self, message: str = "Upstream model returned an empty response."):
        super().__init__(message, extra={"message": "The AI did not return any content. Please try again."})


class UpstreamBusy(PromptFormError):
    status_code = 503
    kind = "upstream_busy"


class UpstreamTimeout(PromptFormError):
    status_code = 504
    kind = "upstream_timeout"


class UpstreamMalformed(PromptFormError):
    kind = "upstream_malformed"

    def __init__(self, reason: str, raw_text: str):
        super().__init__(f"Model response was not valid JSON: {reason}")
        self.reason = reason
        self.raw_text = raw_text


class UpstreamError(PromptFormError):
    kind = "upstream_error"


class RepositoryError(PromptFormError):
    kind = "repository_error"
