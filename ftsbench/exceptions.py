"""Error hierarchy shared by criteria, translators, backends and the runner."""

from difflib import get_close_matches
from typing import Any, Dict, Iterable, Optional


class FtsBenchError(Exception):
    """
    Base class for every ftsbench error
    """

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": str(self),
        }


class InvalidCriteria(FtsBenchError, ValueError):
    """
    Search criteria rejected at construction time
    """

    def __init__(self, message: str, field: Optional[str] = None,
                 valid_values: Optional[Iterable[str]] = None,
                 value: Optional[str] = None):
        self.field = field
        self.suggestions = []
        if value is not None and valid_values is not None:
            self.suggestions = get_close_matches(str(value), list(valid_values), n=3, cutoff=0.6)
            if self.suggestions:
                message += f" Did you mean: {', '.join(self.suggestions)}?"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "INVALID_CRITERIA",
            "message": str(self),
            "field": self.field,
            "suggestions": self.suggestions,
        }


class CapabilityUnsupported(FtsBenchError):
    """
    A criteria requests a feature the target backend does not have
    """

    def __init__(self, capability: str, backend: Optional[str] = None,
                 message: Optional[str] = None):
        self.capability = capability
        self.backend = backend
        if message is None:
            target = backend or "backend"
            message = f"{target} does not support '{capability}'"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "CAPABILITY_UNSUPPORTED",
            "message": str(self),
            "capability": self.capability,
            "backend": self.backend,
        }


class TranslationError(CapabilityUnsupported):
    """
    The translator has no native syntax for the requested combination
    """

    def __init__(self, message: str, capability: str = "translation",
                 backend: Optional[str] = None):
        super().__init__(capability, backend=backend, message=message)

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["error"] = "TRANSLATION_ERROR"
        return payload


class BackendError(FtsBenchError):
    """
    Base class for faults raised while talking to a backend
    """

    def __init__(self, message: str, backend: Optional[str] = None):
        self.backend = backend
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": str(self),
            "backend": self.backend,
        }


class BackendUnavailable(BackendError):
    """
    Connection, warmup or execution failure
    """


class TrialTimeout(BackendError):
    """
    A timed trial did not finish within the configured bound
    """

    def __init__(self, backend: str, timeout: float):
        self.timeout = timeout
        super().__init__(f"{backend} trial exceeded {timeout:.1f}s", backend=backend)
