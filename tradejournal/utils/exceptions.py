from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    DATABASE = "database"
    AI_GATEWAY = "ai_gateway"
    MARKET_DATA = "market_data"
    RATE_LIMIT = "rate_limit"
    CONFIGURATION = "configuration"
    SYSTEM = "system"


class JournalError(Exception):
    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        status_code: Optional[int] = None,
    ) -> None:
        self.message = message
        self.category = category
        self.status_code = status_code
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.category.value}] {self.message}"]
        if self.status_code:
            parts.append(f"(HTTP {self.status_code})")
        return " | ".join(parts)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "category": self.category.value}


class AuthenticationError(JournalError):
    def __init__(self, message: str = "Not authenticated", status_code: int = 401) -> None:
        super().__init__(message, ErrorCategory.AUTHENTICATION, status_code)


class ValidationError(JournalError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCategory.VALIDATION, 400)


class NotFoundError(JournalError):
    def __init__(self, message: str = "Not found") -> None:
        super().__init__(message, ErrorCategory.NOT_FOUND, 404)


class DatabaseError(JournalError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCategory.DATABASE, 500)


class AIGatewayError(JournalError):
    def __init__(self, message: str = "AI request failed", status_code: int = 502) -> None:
        super().__init__(message, ErrorCategory.AI_GATEWAY, status_code)


class MarketDataError(JournalError):
    def __init__(self, message: str, status_code: int = 502) -> None:
        super().__init__(message, ErrorCategory.MARKET_DATA, status_code)


class RateLimitError(JournalError):
    def __init__(self, message: str = "Rate limit exceeded") -> None:
        super().__init__(message, ErrorCategory.RATE_LIMIT, 429)


class ConfigurationError(JournalError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCategory.CONFIGURATION, 503)
