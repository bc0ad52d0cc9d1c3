from typing import Optional

from pydantic import ValidationError


class ValidationFailed(ValueError):
    """Input rejected before any write; ``errors`` maps field name to message."""

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = errors
        summary = "; ".join(f"{field}: {msg}" for field, msg in errors.items())
        super().__init__(summary or "Validation failed")

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationFailed":
        return cls({field: message})

    @classmethod
    def from_pydantic(
        cls, exc: ValidationError, *, prefix: Optional[str] = None
    ) -> "ValidationFailed":
        errors: dict[str, str] = {}
        for item in exc.errors():
            loc = ".".join(str(part) for part in item.get("loc", ()))
            if prefix:
                loc = f"{prefix}.{loc}" if loc else prefix
            errors.setdefault(loc or "__root__", item.get("msg", "Invalid value"))
        return cls(errors)


class NotFound(ValueError):
    pass


class Conflict(ValueError):
    pass


class AggregationError(ValueError):
    pass


class QuerySuperseded(RuntimeError):
    pass
