"""
UCP Checkout Gateway - Universal Commerce Protocol surface for a merchant backend.

The gateway translates UCP checkout, payment-handler and identity-linking
requests into calls against a merchant backend while holding all ephemeral
state (sessions, payment tokens, OAuth artifacts, idempotency claims) in a
shared key-value store.
"""

__version__ = "0.1.0"
