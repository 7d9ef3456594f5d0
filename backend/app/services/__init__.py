"""
services — Application operations behind the HTTP and WebSocket surface.

Modules:
    disasters      — disaster CRUD, radius search, reading append
    alert_configs  — alert-configuration CRUD
    ingestion      — simulate_sensor_data / trigger_alert_process
    container      — wiring of stores, fan-out and engine per application
"""
