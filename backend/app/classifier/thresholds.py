"""
thresholds.py — Threshold classifier: raw sensor reading → disaster or not.

═══════════════════════════════════════════════════════════════════════════
RULE TABLE
═══════════════════════════════════════════════════════════════════════════

    Type         Trigger                          Severity (clamped 1–10)
    ──────────   ──────────────────────────────   ──────────────────────────
    EARTHQUAKE   magnitude ≥ 4.0                  ceil(magnitude)
    FLOOD        waterLevel ≥ 3.0 m               ceil(waterLevel × 2)
    FIRE         temperature ≥ 60 °C              ceil((temperature − 40) / 10)
    STORM        windSpeed ≥ 65 km/h              no formula yet — a
                 OR precipitation ≥ 25 mm/h       triggered reading is logged
                                                  and yields no disaster

The table is plain data. ``classify`` takes it as an argument so callers
can inject their own rules (e.g. a STORM severity formula) without
touching any instance state.

A reading below threshold is not an error: ``classify`` returns ``None``
("observed, no disaster"). Missing or non-numeric required fields raise
``InvalidInputError``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from backend.app.core.errors import InvalidInputError
from backend.app.domain.models import (
    SEVERITY_MAX,
    SEVERITY_MIN,
    DisasterCreate,
    DisasterType,
    GeoPoint,
    SensorReading,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_LOCATION_LABEL = "Unknown location"


# ═══════════════════════════════════════════════════════════════════════════
# Rule Definition
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ThresholdRule:
    """
    Detection rule for one disaster type.

    Attributes
    ----------
    primary_field : str
        Reading field stored as the disaster's initial sensor value; falls
        back to the first present ``any_of_fields`` entry.
    required_fields : tuple of str
        Numeric fields that must be present; any one missing → invalid input.
    optional_fields : tuple of str
        Numeric fields coerced when present, ignored when absent.
    any_of_fields : tuple of str
        Numeric fields of which at least one must be present.
    trigger : callable
        ``values → bool``; True when the reading constitutes a disaster.
    severity : callable or None
        ``values → raw severity`` (before clamping). None marks an
        extension point: the trigger is evaluated but no disaster is built.
    describe : callable
        ``(values, location_label) → description``.
    """
    primary_field: str
    required_fields: Tuple[str, ...]
    trigger: Callable[[Mapping[str, float]], bool]
    severity: Optional[Callable[[Mapping[str, float]], float]]
    describe: Callable[[Mapping[str, float], str], str]
    optional_fields: Tuple[str, ...] = ()
    any_of_fields: Tuple[str, ...] = ()


def _fmt(value: float) -> str:
    """Render 5.0 as '5' and 5.25 as '5.25', like the sensors report it."""
    return f"{value:g}"


def _describe_storm(values: Mapping[str, float], where: str) -> str:
    parts = []
    if "windSpeed" in values:
        parts.append(f"wind speed {_fmt(values['windSpeed'])}km/h")
    if "precipitation" in values:
        parts.append(f"precipitation {_fmt(values['precipitation'])}mm/h")
    return f"Storm with {' and '.join(parts)} detected at {where}"


DEFAULT_RULES: Dict[DisasterType, ThresholdRule] = {
    DisasterType.EARTHQUAKE: ThresholdRule(
        primary_field="magnitude",
        required_fields=("magnitude",),
        optional_fields=("depth",),
        trigger=lambda v: v["magnitude"] >= 4.0,
        severity=lambda v: math.ceil(v["magnitude"]),
        describe=lambda v, where: (
            f"Earthquake of magnitude {_fmt(v['magnitude'])} detected at {where}"
        ),
    ),
    DisasterType.FLOOD: ThresholdRule(
        primary_field="waterLevel",
        required_fields=("waterLevel",),
        optional_fields=("flowRate",),
        trigger=lambda v: v["waterLevel"] >= 3.0,
        severity=lambda v: math.ceil(v["waterLevel"] * 2),
        describe=lambda v, where: (
            f"Flood with water level {_fmt(v['waterLevel'])}m detected at {where}"
        ),
    ),
    DisasterType.FIRE: ThresholdRule(
        primary_field="temperature",
        required_fields=("temperature",),
        optional_fields=("smokeLevel",),
        trigger=lambda v: v["temperature"] >= 60.0,
        severity=lambda v: math.ceil((v["temperature"] - 40.0) / 10.0),
        describe=lambda v, where: (
            f"Fire with temperature {_fmt(v['temperature'])}°C detected at {where}"
        ),
    ),
    DisasterType.STORM: ThresholdRule(
        primary_field="windSpeed",
        required_fields=(),
        any_of_fields=("windSpeed", "precipitation"),
        trigger=lambda v: (
            v.get("windSpeed", 0.0) >= 65.0 or v.get("precipitation", 0.0) >= 25.0
        ),
        severity=None,
        describe=_describe_storm,
    ),
}


# ═══════════════════════════════════════════════════════════════════════════
# Input Coercion
# ═══════════════════════════════════════════════════════════════════════════

def parse_disaster_type(raw: Any) -> DisasterType:
    """Accept 'flood', 'FLOOD' or a DisasterType."""
    if isinstance(raw, DisasterType):
        return raw
    try:
        return DisasterType(str(raw).strip().upper())
    except ValueError:
        raise InvalidInputError(
            f"Unknown disaster type: {raw!r}", field="type",
        ) from None


def _coerce_float(reading: Mapping[str, Any], name: str, *, required: bool) -> Optional[float]:
    raw = reading.get(name)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if required:
            raise InvalidInputError(f"Missing required field '{name}'", field=name)
        return None
    if isinstance(raw, bool):
        raise InvalidInputError(f"Field '{name}' must be numeric", field=name, value=raw)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise InvalidInputError(
            f"Field '{name}' must be numeric", field=name, value=str(raw),
        ) from None
    if not math.isfinite(value):
        raise InvalidInputError(f"Field '{name}' must be finite", field=name, value=str(raw))
    return value


def _coerce_location(reading: Mapping[str, Any]) -> GeoPoint:
    latitude = _coerce_float(reading, "latitude", required=True)
    longitude = _coerce_float(reading, "longitude", required=True)
    try:
        return GeoPoint(longitude=longitude, latitude=latitude)
    except ValueError as exc:
        raise InvalidInputError(str(exc), field="location") from None


def clamp_severity(raw: float) -> int:
    return int(max(SEVERITY_MIN, min(SEVERITY_MAX, raw)))


def _primary_value(rule: ThresholdRule, values: Mapping[str, float]) -> float:
    if rule.primary_field in values:
        return values[rule.primary_field]
    return next(values[n] for n in rule.any_of_fields if n in values)


# ═══════════════════════════════════════════════════════════════════════════
# Classification
# ═══════════════════════════════════════════════════════════════════════════

def classify(
    disaster_type: Any,
    reading: Mapping[str, Any],
    *,
    rules: Mapping[DisasterType, ThresholdRule] = DEFAULT_RULES,
) -> Optional[DisasterCreate]:
    """
    Decide whether ``reading`` is a disaster and build its creation request.

    Parameters
    ----------
    disaster_type : str | DisasterType
        Sensor family of the reading.
    reading : mapping
        Raw reading: ``latitude``, ``longitude``, the type's numeric fields,
        optional ``location`` label and ``sensorId``.
    rules : mapping
        Rule table; defaults to ``DEFAULT_RULES``.

    Returns
    -------
    DisasterCreate or None
        None when the trigger condition is not met (or the type has no
        severity formula yet).

    Raises
    ------
    InvalidInputError
        Unknown type, missing/non-numeric required fields, bad coordinates.
    """
    dtype = parse_disaster_type(disaster_type)
    rule = rules.get(dtype)
    if rule is None:
        raise InvalidInputError(
            f"No threshold rule for disaster type {dtype.value}", field="type",
        )

    location = _coerce_location(reading)
    values: Dict[str, float] = {}
    for name in rule.required_fields:
        values[name] = _coerce_float(reading, name, required=True)
    for name in rule.optional_fields + rule.any_of_fields:
        value = _coerce_float(reading, name, required=False)
        if value is not None:
            values[name] = value
    if rule.any_of_fields and not any(n in values for n in rule.any_of_fields):
        raise InvalidInputError(
            f"One of {', '.join(rule.any_of_fields)} is required",
            field=rule.any_of_fields[0],
        )

    if not rule.trigger(values):
        logger.debug("%s reading below threshold: %s", dtype.value, values)
        return None

    if rule.severity is None:
        logger.warning(
            "%s reading crossed threshold but no severity formula is "
            "configured — no disaster created", dtype.value,
        )
        return None

    severity = clamp_severity(rule.severity(values))
    where = str(reading.get("location") or DEFAULT_LOCATION_LABEL)
    sensor_id = str(reading.get("sensorId") or f"SIM-{dtype.value}-1")

    return DisasterCreate(
        type=dtype,
        location=location,
        severity=severity,
        description=rule.describe(values, where),
        readings=(
            SensorReading(
                sensor_id=sensor_id,
                value=_primary_value(rule, values),
                timestamp=utc_now(),
            ),
        ),
    )
