"""Cross-context messaging.

Execution contexts share no state; they exchange request/response messages and
one-way event broadcasts through a `MessageHub`.
"""
