"""
channels — Outbound delivery backends.

Each gateway exposes:
    send(to, body) → SendResult

Gateways are stateless shims. Fan-out policy lives in the dispatcher.
"""
