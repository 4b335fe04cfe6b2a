"""Error taxonomy shared by the pipeline jobs."""

from typing import Any, Dict, List, Optional


class MarketTrackerError(Exception):
    """Base class for pipeline errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class FetchError(MarketTrackerError):
    """Network failure, timeout or non-2xx response from the marketplace API."""

    def __init__(self, message: str, target: str, status_code: Optional[int] = None):
        super().__init__(message, {"target": target, "status_code": status_code})
        self.target = target
        self.status_code = status_code


class ParseError(MarketTrackerError):
    """Response did not have the expected shape or values."""

    def __init__(self, message: str, target: str):
        super().__init__(message, {"target": target})
        self.target = target


class ConfigurationError(MarketTrackerError):
    """Required configuration is missing; jobs abort before doing any work."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message, {"missing": missing or []})
        self.missing = missing or []
