"""Service layer: payments, webhooks, receipts and scheduling."""
