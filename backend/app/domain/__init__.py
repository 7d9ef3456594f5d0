"""
domain — Entities and state transitions shared by every layer.

Modules:
    models       — DisasterEvent, AlertConfig, AlertPayload and value objects
    transitions  — alerts_sent / last_triggered transitions + store commands
"""
