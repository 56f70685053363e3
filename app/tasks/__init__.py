from app.tasks.notifications import send_payment_receipt
from app.tasks.reconciliation import reconcile_integration, sweep_bank_integrations

__all__ = [
    "send_payment_receipt",
    "reconcile_integration",
    "sweep_bank_integrations",
]
