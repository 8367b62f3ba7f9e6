"""
alerts — Inbound SMS routing and outbound fan-out.

Sub-modules:
    channels/      — SMS gateway backends (Twilio, simulation)
    dispatcher     — concurrent fan-out with fail-loud aggregation
    routing        — sender classification: escalate vs. broadcast
    relay_service  — service facade used by the HTTP layer
    models         — data structures shared across the system
"""
