"""
Exception hierarchy for the eyewear overlay pipeline.

All three stage errors are fatal: the pipeline reports them and stops
before tracking starts. Nothing here is retried.
"""

from typing import Any, Dict, Optional


class EyewearError(Exception):
    """
    Base exception for all pipeline errors.

    Context entries and the underlying cause are folded into the message
    so a single log line is enough to diagnose the failure.
    """

    def __init__(self,
                 message: str,
                 *,
                 context: Optional[Dict[str, Any]] = None,
                 cause: Optional[BaseException] = None):
        self.context = context or {}
        self.cause = cause

        full_message = message
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            full_message = f"{message} [{context_str}]"

        if cause is not None:
            full_message = f"{full_message} (caused by: {cause})"

        super().__init__(full_message)


class ModelInitError(EyewearError):
    """The pose model or its compute backend could not be prepared."""

    def __init__(self, model_name: str, cause: Optional[BaseException] = None):
        super().__init__(
            f"Failed to initialize pose model '{model_name}'",
            context={"model": model_name},
            cause=cause,
        )


class AssetLoadError(EyewearError):
    """The overlay mesh is unreachable or malformed."""

    def __init__(self, path: str, reason: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        context = {"path": path}
        if reason:
            context["reason"] = reason
        super().__init__("Failed to load overlay asset", context=context, cause=cause)


class CaptureUnavailableError(EyewearError):
    """The camera is missing, refused, or cannot deliver the requested stream."""

    def __init__(self, device: int, width: int, height: int,
                 reason: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        context: Dict[str, Any] = {"device": device, "size": f"{width}x{height}"}
        if reason:
            context["reason"] = reason
        super().__init__("Camera stream unavailable", context=context, cause=cause)
