"""
Consumer side of the integration events: the idempotency ledger and the
``invitation.completed`` consumer.
"""
