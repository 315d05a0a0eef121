from __future__ import annotations


class BillingError(Exception):
    """Base class for billing engine failures surfaced to callers."""


class RateConfigValidationError(BillingError):
    """A rate configuration was rejected before being stored."""

    def __init__(self, errors: list[dict] | str):
        if isinstance(errors, str):
            errors = [{"field": "", "message": errors}]
        self.errors = errors
        super().__init__("; ".join(_format_error(e) for e in errors) or "Invalid rate configuration.")


class InvalidRateConfig(BillingError):
    """A stored rate configuration could not be used for a payout computation."""


class MatchConflict(BillingError):
    """A claim lost the race against a concurrent writer. Logged, never raised to API callers."""


class InvoiceError(BillingError):
    pass


class EmptySelection(InvoiceError):
    def __init__(self, message: str = "At least one event must be selected."):
        super().__init__(message)


class EntityMismatch(InvoiceError):
    def __init__(self, message: str = "Events must belong to the selected billing entity.", event_ids=None):
        self.event_ids = list(event_ids or [])
        super().__init__(message)


class EventAlreadyInvoiced(InvoiceError):
    def __init__(self, message: str = "One or more events are already linked to another invoice.", event_ids=None):
        self.event_ids = list(event_ids or [])
        super().__init__(message)


class InvoiceLocked(InvoiceError):
    """Only draft invoices may change their linked events."""


def _format_error(error: dict) -> str:
    field = error.get("field")
    message = error.get("message", "")
    return f"{field}: {message}" if field else message
