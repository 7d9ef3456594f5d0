"""
classifier — Turns raw sensor readings into disaster creation requests.

Modules:
    thresholds  — per-type rule table + classify()
"""
