"""Domain-specific exceptions"""

from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class FieldError:
    """Single validation problem attached to an input field"""

    field: str
    message: str


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Malformed amount, date, enum or out-of-range input"""

    def __init__(self, errors: List[FieldError]):
        self.errors = list(errors)
        detail = "; ".join(f"{e.field}: {e.message}" for e in self.errors)
        super().__init__(f"Validation failed: {detail}")


class NotFoundError(DomainException):
    """Requested entity does not exist"""

    def __init__(self, entity: str, key: object, message: Optional[str] = None):
        self.entity = entity
        self.key = key
        super().__init__(message or f"{entity} not found: {key}")


class RateNotFoundError(NotFoundError):
    """No exchange rate (direct or inverse) effective at the requested date"""

    def __init__(self, from_code: str, to_code: str, as_of: object):
        self.from_code = from_code
        self.to_code = to_code
        self.as_of = as_of
        super().__init__(
            "ExchangeRate",
            (from_code, to_code, as_of),
            f"No exchange rate {from_code}->{to_code} effective on or before {as_of}",
        )


class TaxRuleNotFoundError(NotFoundError):
    """No tax rule matches the jurisdiction, category and period"""

    def __init__(self, country: str, region: Optional[str], category: str, on_date: object):
        super().__init__(
            "TaxRule",
            (country, region, category, on_date),
            f"No tax rule for {country}/{region or '*'} category={category} on {on_date}",
        )


class InvalidInputError(DomainException):
    """Input is well-formed but makes the computation meaningless"""

    pass


class NoConvergenceError(DomainException):
    """IRR search found no root within its interval or iteration budget"""

    pass


class OperationCancelledError(DomainException):
    """Caller aborted a long-running computation"""

    pass


class ComputationFailureError(DomainException):
    """Unexpected arithmetic failure not otherwise guarded"""

    pass
