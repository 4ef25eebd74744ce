"""
Observability module for modelrelay.

Structured logging only: JSON lines in production, colored text in
development. Every record emitted while a request id is bound carries it.
"""
