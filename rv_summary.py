from __future__ import annotations

# Session/lap text report. Field formatting is table driven: each known
# field name maps to a rule; unknown fields are left out of the report.

from typing import Callable, Dict, List, Optional, Sequence, Tuple

from rv_data import (
    MAX_HEART_RATE_BPM,
    Converter,
    Field,
    TelemetryRecord,
    UnitSystem,
    as_float,
    cvt_altitude,
    cvt_distance,
    cvt_elapsed_time,
    cvt_pace,
    cvt_temperature,
    get_time_in_zone_field,
    parse_timestamp,
    semi_to_degrees,
)


LABEL_WIDTH = 23

SESSION_BANNER = "============================ Session =================================="
ZONE_BANNER = "=================== Time in Heart Rate Zones for Session  ========"


def _lap_banner(lap_index: int) -> str:
    return f"------------------------------ Lap {lap_index}-----------------------------------"


def _fmt_hms(seconds: float) -> str:
    h, m, s = cvt_elapsed_time(seconds)
    return f"{h:01d}h:{m:02d}m:{s:02d}s"


def _line(name: str, text: str) -> str:
    return f"{name:<{LABEL_WIDTH}}: {text}".rstrip()


def _position_rule(fld: Field, units: UnitSystem) -> Optional[str]:
    semi = as_float(fld.value)
    if semi is None:
        return None
    return _line(fld.name, f"{semi_to_degrees(semi):<6.3f}°")


def _passthrough_rule(fld: Field, units: UnitSystem) -> Optional[str]:
    if fld.value is None:
        return None
    return _line(fld.name, f"{fld.value} {fld.units or ''}")


def _timestamp_rule(fld: Field, units: UnitSystem) -> Optional[str]:
    if fld.value is None:
        return None
    return _line(fld.name, str(parse_timestamp(fld.value)))


def _elapsed_rule(fld: Field, units: UnitSystem) -> Optional[str]:
    val = as_float(fld.value)
    if val is None:
        return None
    return _line(fld.name, _fmt_hms(val))


def _converted_rule(converter: Converter, suffixes: Dict[str, str]) -> Callable[[Field, UnitSystem], Optional[str]]:
    def rule(fld: Field, units: UnitSystem) -> Optional[str]:
        val = as_float(fld.value)
        if val is None:
            return None
        return _line(fld.name, f"{converter(val, units):.2f} {suffixes.get(units, '')}")

    return rule


FieldRule = Callable[[Field, UnitSystem], Optional[str]]

_altitude_rule = _converted_rule(cvt_altitude, {"us": "feet", "metric": "meters"})
_distance_rule = _converted_rule(cvt_distance, {"us": "miles", "metric": "kilometers"})
_temperature_rule = _converted_rule(cvt_temperature, {"us": "°F", "metric": "°C"})
_pace_rule = _converted_rule(cvt_pace, {"us": "min/mile", "metric": "min/km"})

FIELD_RULES: Dict[str, FieldRule] = {}
for _name in ("start_position_lat", "start_position_long", "end_position_lat", "end_position_long"):
    FIELD_RULES[_name] = _position_rule
for _name in (
    "total_strides",
    "total_calories",
    "avg_heart_rate",
    "max_heart_rate",
    "avg_running_cadence",
    "max_running_cadence",
    "total_training_effect",
    "first_lap_index",
    "num_laps",
    "avg_fractional_cadence",
    "max_fractional_cadence",
    "total_anaerobic_training_effect",
    "sport",
    "sub_sport",
):
    FIELD_RULES[_name] = _passthrough_rule
for _name in ("total_ascent", "total_descent"):
    FIELD_RULES[_name] = _altitude_rule
FIELD_RULES["total_distance"] = _distance_rule
for _name in ("timestamp", "start_time"):
    FIELD_RULES[_name] = _timestamp_rule
for _name in ("total_elapsed_time", "total_timer_time"):
    FIELD_RULES[_name] = _elapsed_rule
for _name in ("min_temperature", "max_temperature", "avg_temperature"):
    FIELD_RULES[_name] = _temperature_rule
for _name in ("enhanced_avg_speed", "enhanced_max_speed"):
    FIELD_RULES[_name] = _pace_rule


def format_field(fld: Field, units: UnitSystem) -> Optional[str]:
    """One report line for a session/lap field, or None if it is not reported."""
    rule = FIELD_RULES.get(fld.name)
    if rule is None:
        return None
    return rule(fld, units)


def zone_bounds(zone: int, limits: Sequence[float]) -> Tuple[float, float]:
    # There is one more zone than there are upper limits; the last is open.
    lower = 0.0 if zone == 0 or not limits else limits[min(zone, len(limits)) - 1]
    upper = limits[zone] if zone < len(limits) else MAX_HEART_RATE_BPM
    return lower, upper


def zone_lines(zone_times: Sequence[float], zone_limits: Sequence[float]) -> List[str]:
    lines: List[str] = []
    for z, seconds in enumerate(zone_times):
        lower, upper = zone_bounds(z, zone_limits)
        lines.append(f"Zone {z} ({int(lower):>3}-{int(upper):>3} bpm): {_fmt_hms(seconds)}")
    return lines


def build_summary_lines(records: Sequence[TelemetryRecord], units: UnitSystem) -> List[str]:
    lines: List[str] = []
    lap_index = 0
    for rec in records:
        if rec.kind == "session":
            lines.extend(["", SESSION_BANNER, ""])
        elif rec.kind == "lap":
            lap_index += 1
            lines.extend(["", _lap_banner(lap_index), ""])
        else:
            continue
        for fld in rec.fields:
            text = format_field(fld, units)
            if text is not None:
                lines.append(text)

    zone_times, zone_limits = get_time_in_zone_field(records)
    if zone_times is not None and zone_limits is not None:
        lines.extend(["", ZONE_BANNER, ""])
        lines.extend(zone_lines(zone_times, zone_limits))
        lines.append("")
    return lines


def build_summary(records: Sequence[TelemetryRecord], units: UnitSystem) -> str:
    return "\n".join(build_summary_lines(records, units)) + "\n"
