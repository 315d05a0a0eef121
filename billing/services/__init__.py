from .invoicing import create_invoice, delete_invoice, update_invoice
from .matching import match_events
from .payouts import compute_payout
from .rematch import RematchScope, rematch_events

__all__ = [
    "RematchScope",
    "compute_payout",
    "create_invoice",
    "delete_invoice",
    "match_events",
    "rematch_events",
    "update_invoice",
]
