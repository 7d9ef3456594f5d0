"""
alerts — Alert matching and real-time alert dispatch.

Sub-modules:
    matching_engine — per-disaster matching pass: thresholds, cooldown, alertsSent
    dispatcher      — builds AlertPayloads and publishes disaster-alert
    region          — region containment for the optional region filter
"""
