"""
transitions.py — Explicit state transitions for the alert pipeline.

The matching engine mutates exactly two things:

    DisasterEvent.alerts_sent    false → true, once
    AlertConfig.last_triggered   monotonically increasing

Each transition is a pure function returning the new snapshot together
with a persistence command. Stores apply commands; a guarded command is a
compare-and-set (it only lands if the stored value still equals what the
caller observed) and the store reports whether it landed.

    new_config, cmd = record_trigger(config, now)
    if await config_store.apply(cmd):
        ...  # this pass owns the trigger
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional, Tuple

from backend.app.domain.models import AlertConfig, DisasterEvent


# ═══════════════════════════════════════════════════════════════════════════
# Persistence Commands
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MarkAlertsSent:
    """Set ``alerts_sent = True``; guarded → only if currently false."""
    disaster_id: str
    guarded: bool = True


@dataclass(frozen=True)
class SetLastTriggered:
    """Set ``last_triggered``; guarded → only if unchanged since read."""
    config_id: str
    triggered_at: datetime
    expected_previous: Optional[datetime]
    guarded: bool = True


# ═══════════════════════════════════════════════════════════════════════════
# Transitions
# ═══════════════════════════════════════════════════════════════════════════

def mark_alerts_sent(
    disaster: DisasterEvent, *, guarded: bool = True,
) -> Tuple[DisasterEvent, MarkAlertsSent]:
    """Close a disaster for alert processing."""
    return (
        replace(disaster, alerts_sent=True),
        MarkAlertsSent(disaster_id=disaster.id, guarded=guarded),
    )


def record_trigger(
    config: AlertConfig, now: datetime, *, guarded: bool = True,
) -> Tuple[AlertConfig, SetLastTriggered]:
    """Stamp a config as triggered at ``now`` (never moves backwards)."""
    previous = config.last_triggered
    triggered_at = max(now, previous) if previous else now
    return (
        replace(config, last_triggered=triggered_at),
        SetLastTriggered(
            config_id=config.id,
            triggered_at=triggered_at,
            expected_previous=previous,
            guarded=guarded,
        ),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Cooldown
# ═══════════════════════════════════════════════════════════════════════════

def cooldown_remaining(config: AlertConfig, now: datetime) -> timedelta:
    """Time left before ``config`` may trigger again (zero if free)."""
    if config.last_triggered is None:
        return timedelta(0)
    elapsed = now - config.last_triggered
    window = timedelta(minutes=config.cooldown_period)
    if elapsed >= window:
        return timedelta(0)
    return window - elapsed


def in_cooldown(config: AlertConfig, now: datetime) -> bool:
    return cooldown_remaining(config, now) > timedelta(0)
