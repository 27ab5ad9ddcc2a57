"""Audit store adapters.

The recorder depends on ``AbstractAuditStore`` only; the JSON Lines file
store is the durable default and the in-memory store backs tests and
ephemeral deployments.
"""
