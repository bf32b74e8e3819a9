import logging
import math
import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Literal, Mapping, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from fitparse import FitFile


# -----------------
# Data structures
# -----------------

UnitSystem = Literal["metric", "us", "none"]
FormatterKind = Literal["numeric", "pace"]

UNIT_SYSTEMS: Tuple[UnitSystem, ...] = ("metric", "us", "none")

MIN_ZOOM = 0.01
SEMICIRCLES_PER_180 = float(2 ** 31)
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S %z"
DEFAULT_MAP_CENTER = (29.7601, -95.3701)  # Houston
MAX_HEART_RATE_BPM = 220.0


class InvalidZoomError(ValueError):
    """Zoom factor below MIN_ZOOM; the caller should reject the UI input."""


class TimestampParseError(ValueError):
    """A timestamp field could not be parsed into a datetime."""


class Field(NamedTuple):
    name: str
    value: Any
    units: str = ""


@dataclass(frozen=True)
class TelemetryRecord:
    kind: str
    fields: Tuple[Field, ...] = ()

    @classmethod
    def from_values(
        cls,
        kind: str,
        values: Mapping[str, Any],
        units: Optional[Mapping[str, str]] = None,
    ) -> "TelemetryRecord":
        units = units or {}
        return cls(kind, tuple(Field(k, v, units.get(k, "")) for k, v in values.items()))

    def get(self, name: str) -> Optional[Field]:
        for fld in self.fields:
            if fld.name == name:
                return fld
        return None


class PlotRange(NamedTuple):
    x: Tuple[float, float]
    y: Tuple[float, float]


EMPTY_RANGE = PlotRange((0.0, 0.0), (0.0, 0.0))


@dataclass(frozen=True, eq=False)
class GraphSeries:
    plotvals: np.ndarray
    caption: str
    xlabel: str
    ylabel: str
    plot_range: PlotRange
    y_format: FormatterKind = "numeric"

    def __len__(self) -> int:
        return int(self.plotvals.shape[0])

    def format_y(self, value: float) -> str:
        return format_y(self.y_format, value)


@dataclass(frozen=True, eq=False)
class GraphCache:
    distance_pace: GraphSeries
    distance_heart_rate: GraphSeries
    distance_cadence: GraphSeries
    distance_elevation: GraphSeries
    distance_temperature: GraphSeries
    time_stamps: Tuple[dt.datetime, ...]
    units: UnitSystem
    zoom_x: float
    zoom_y: float

    def series(self) -> Tuple[Tuple[str, GraphSeries], ...]:
        return tuple((key, getattr(self, key)) for key, *_ in GRAPH_FIELDS)

    def matches(self, units: UnitSystem, zoom_x: float, zoom_y: float) -> bool:
        return self.units == units and self.zoom_x == zoom_x and self.zoom_y == zoom_y


@dataclass(frozen=True, eq=False)
class MapCache:
    run_path: np.ndarray

    def __len__(self) -> int:
        return int(self.run_path.shape[0])


class Hairline(NamedTuple):
    x: float
    y: float
    y_min: float
    y_max: float
    label: str


@dataclass(frozen=True)
class ScrubState:
    position: float
    series_index: Dict[str, int] = field(default_factory=dict)
    hairlines: Dict[str, Optional[Hairline]] = field(default_factory=dict)
    timestamp_index: int = 0
    timestamp: Optional[dt.datetime] = None
    map_index: int = 0
    marker: Optional[Tuple[float, float]] = None


def _resolve_units(units: str) -> UnitSystem:
    normalized = units.strip().lower() if units else "none"
    if normalized not in UNIT_SYSTEMS:
        logging.warning("Unknown unit system '%s'; falling back to none", units)
        return "none"
    return normalized  # type: ignore[return-value]


def units_from_index(index: int) -> UnitSystem:
    # Dropdown order in the viewer: metric first, then US.
    if index == 0:
        return "metric"
    if index == 1:
        return "us"
    return "none"


def units_to_index(units: UnitSystem) -> int:
    return {"metric": 0, "us": 1}.get(units, 2)


# -----------------
# Record accessor
# -----------------

def as_float(value: Any) -> Optional[float]:
    """Normalize any numeric field variant to float; everything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        return float(value)
    return None


def as_float_list(value: Any) -> List[float]:
    if not isinstance(value, (list, tuple, np.ndarray)):
        return []
    out: List[float] = []
    for item in value:
        v = as_float(item)
        if v is not None:
            out.append(v)
    return out


def get_field_value(records: Iterable[TelemetryRecord], kind: str, field_name: str) -> Any:
    for rec in records:
        if rec.kind != kind:
            continue
        fld = rec.get(field_name)
        if fld is not None:
            return fld.value
    return None


def get_sess_record_field(records: Iterable[TelemetryRecord], field_name: str) -> Optional[float]:
    return as_float(get_field_value(records, "session", field_name))


def get_msg_record_field_as_vec(
    records: Iterable[TelemetryRecord],
    field_name: str,
    kind: str = "record",
) -> List[float]:
    values: List[float] = []
    for rec in records:
        if rec.kind != kind:
            continue
        for fld in rec.fields:
            if fld.name != field_name:
                continue
            v = as_float(fld.value)
            if v is not None:
                values.append(v)
    return values


def get_time_in_zone_field(
    records: Iterable[TelemetryRecord],
) -> Tuple[Optional[List[float]], Optional[List[float]]]:
    """Zone durations (s) and zone upper limits (bpm) for the session.

    The last session-referenced time_in_zone message wins; there is normally
    only one.
    """
    result: Tuple[Optional[List[float]], Optional[List[float]]] = (None, None)
    for rec in records:
        if rec.kind != "time_in_zone":
            continue
        ref = rec.get("reference_mesg")
        if ref is None or str(ref.value) != "session":
            continue
        times = rec.get("time_in_hr_zone")
        limits = rec.get("hr_zone_high_boundary")
        result = (
            as_float_list(times.value) if times is not None else [],
            as_float_list(limits.value) if limits is not None else [],
        )
    return result


# -----------------
# Unit conversion
# -----------------

def cvt_pace(speed: float, units: UnitSystem) -> float:
    # Speeds under 1 m/s are floored to avoid dividing by ~0.
    if units == "us":
        return 26.8224 if speed < 1.0 else 26.8224 / speed
    if units == "metric":
        return 16.666667 if speed < 1.0 else 16.666667 / speed
    return speed


def cvt_distance(distance: float, units: UnitSystem) -> float:
    if units == "us":
        return distance * 0.00062137119
    if units == "metric":
        return distance * 0.001
    return distance


def cvt_altitude(altitude: float, units: UnitSystem) -> float:
    if units == "us":
        return altitude * 3.2808399
    return altitude


def cvt_temperature(temperature: float, units: UnitSystem) -> float:
    if units == "us":
        return temperature * 1.8 + 32.0
    return temperature


def semi_to_degrees(semi: float) -> float:
    return float(semi) * 180.0 / SEMICIRCLES_PER_180


def cvt_elapsed_time(time_in_sec: float) -> Tuple[int, int, int]:
    """Split seconds into (hours, minutes, seconds), truncating each part."""
    t = time_in_sec / 3600.0
    hr = math.trunc(t)
    minsec = (t - hr) * 60.0
    mins = math.trunc(minsec)
    sec = math.trunc((minsec - mins) * 60.0)
    return hr, mins, sec


Converter = Callable[[float, UnitSystem], float]

X_CONVERTERS: Dict[str, Converter] = {
    "distance": cvt_distance,
}

Y_CONVERTERS: Dict[str, Converter] = {
    "enhanced_speed": cvt_pace,
    "enhanced_altitude": cvt_altitude,
    "temperature": cvt_temperature,
}


def format_y(kind: FormatterKind, value: float) -> str:
    if kind == "pace":
        if not math.isfinite(value):
            return "--:--"
        sign = "-" if value < 0 else ""
        total = int(round(abs(value) * 60.0))
        mins, secs = divmod(total, 60)
        return f"{sign}{mins:02d}:{secs:02d}"
    return f"{value:7.2f}"


# -----------------
# Series extraction
# -----------------

def _aligned_length(nx: int, ny: int) -> int:
    # Paired streams are occasionally off by one sample. Drop the trailing
    # sample, and when x outruns y, trim to y. Not a timestamp sync.
    if nx == 0 or ny == 0:
        return 0
    n = nx - 1
    if nx > ny:
        n = ny - 1
    return n


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.flags.writeable = False
    return arr


def get_xy(
    records: Sequence[TelemetryRecord],
    units: UnitSystem,
    x_field_name: str,
    y_field_name: str,
    dtype: Any = np.float32,
) -> np.ndarray:
    """Converted (x, y) samples for a pair of per-record fields.

    Returns a read-only array of shape (n, 2). Missing fields give an empty
    array, never an error.
    """
    x = get_msg_record_field_as_vec(records, x_field_name)
    y = get_msg_record_field_as_vec(records, y_field_name)
    n = _aligned_length(len(x), len(y))
    if n != min(len(x), len(y)):
        logging.debug(
            "Aligned %s/%s: %d x %d samples -> %d",
            x_field_name,
            y_field_name,
            len(x),
            len(y),
            n,
        )
    out = np.empty((max(n, 0), 2), dtype=dtype)
    if n <= 0:
        return _readonly(out)
    x_cvt = X_CONVERTERS.get(x_field_name)
    y_cvt = Y_CONVERTERS.get(y_field_name)
    for idx in range(n):
        out[idx, 0] = x_cvt(x[idx], units) if x_cvt is not None else x[idx]
        out[idx, 1] = y_cvt(y[idx], units) if y_cvt is not None else y[idx]
    return _readonly(out)


# -----------------
# Plot ranges
# -----------------

def set_plot_range(samples: np.ndarray, zoom_x: float, zoom_y: float) -> PlotRange:
    """Plot range for samples: [min x, max x / zoom_x) and mean(y) +/- 2 sigma / zoom_y.

    A +/-2 sigma band keeps a single sensor glitch from blowing out the axis.
    """
    if not (zoom_x >= MIN_ZOOM and zoom_y >= MIN_ZOOM):
        raise InvalidZoomError(f"Invalid zoom ({zoom_x}, {zoom_y}); must be >= {MIN_ZOOM}")
    arr = np.asarray(samples, dtype=np.float64).reshape(-1, 2)
    if arr.shape[0] == 0:
        return EMPTY_RANGE
    xs = arr[:, 0][np.isfinite(arr[:, 0])]
    ys = arr[:, 1][np.isfinite(arr[:, 1])]
    if xs.size:
        xrange = (float(xs.min()), float(xs.max()) / zoom_x)
    else:
        xrange = (float("nan"), float("nan"))
    if ys.size:
        mean_y = float(ys.mean())
        sigma_y = float(ys.std())
        half = 2.0 / zoom_y * sigma_y
        yrange = (mean_y - half, mean_y + half)
    else:
        yrange = (float("nan"), float("nan"))
    return PlotRange(xrange, yrange)


# -----------------
# Timestamps and calendar
# -----------------

def _to_local(value: dt.datetime) -> dt.datetime:
    # fitparse hands back naive datetimes in UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone()


def parse_timestamp(value: Any) -> dt.datetime:
    """Timezone-aware local time for a datetime or a TIMESTAMP_FORMAT string."""
    if isinstance(value, dt.datetime):
        return _to_local(value)
    if isinstance(value, str):
        try:
            return _to_local(dt.datetime.strptime(value, TIMESTAMP_FORMAT))
        except ValueError as exc:
            raise TimestampParseError(f"Couldn't parse timestamp {value!r}") from exc
    raise TimestampParseError(f"Couldn't parse timestamp {value!r}")


def get_timestamps(records: Iterable[TelemetryRecord]) -> Tuple[dt.datetime, ...]:
    stamps: List[dt.datetime] = []
    for rec in records:
        if rec.kind != "record":
            continue
        for fld in rec.fields:
            if fld.name == "timestamp":
                stamps.append(parse_timestamp(fld.value))
    return tuple(stamps)


def get_run_start_date(records: Iterable[TelemetryRecord]) -> Optional[Tuple[int, int, int]]:
    start: Optional[Tuple[int, int, int]] = None
    for rec in records:
        if rec.kind != "session":
            continue
        fld = rec.get("start_time")
        if fld is None:
            continue
        ts = parse_timestamp(fld.value)
        start = (ts.year, ts.month, ts.day)
    return start


FIXED_HOLIDAY_SYMBOLS: Dict[Tuple[int, int], str] = {
    (1, 1): "🍾",
    (3, 17): "🍀",
    (7, 4): "🎆",
    (10, 31): "🎃",
    (12, 24): "🎅",
    (12, 25): "🎁",
    (12, 31): "🍾",
}

RUNNER_SYMBOL = "🏃"
THANKSGIVING_SYMBOL = "🦃"
EASTER_SYMBOL = "🐰"


def is_fixed_holiday(year: int, month: int, day: int) -> bool:
    return (month, day) in FIXED_HOLIDAY_SYMBOLS


def is_american_thanksgiving(year: int, month: int, day: int) -> bool:
    """True for the fourth Thursday of November."""
    if month != 11 or day < 22 or day > 28:
        return False
    try:
        first_weekday = dt.date(year, 11, 1).weekday()
    except ValueError:
        return False
    thursday = 3
    days_until_first_thursday = (thursday + 7 - first_weekday) % 7
    return day == 1 + days_until_first_thursday + 21


def is_easter(year: int, month: int, day: int) -> bool:
    # Anonymous Gregorian algorithm (Meeus/Jones/Butcher).
    a = year % 19
    b = year // 100
    c = year % 100
    d = b // 4
    e = b % 4
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i = c // 4
    k = c % 4
    l = (32 + 2 * e + 2 * i - h - k) % 7
    m = (a + 11 * h + 22 * l) // 451
    easter_month = (h + l - 7 * m + 114) // 31
    easter_day = ((h + l - 7 * m + 114) % 31) + 1
    return month == easter_month and day == easter_day


def run_symbol(year: int, month: int, day: int) -> str:
    symbol = FIXED_HOLIDAY_SYMBOLS.get((month, day), RUNNER_SYMBOL)
    if is_american_thanksgiving(year, month, day):
        symbol = THANKSGIVING_SYMBOL
    if is_easter(year, month, day):
        symbol = EASTER_SYMBOL
    return symbol


def symbol_for_records(records: Sequence[TelemetryRecord]) -> str:
    start = get_run_start_date(records)
    if start is None:
        return RUNNER_SYMBOL
    return run_symbol(*start)


# -----------------
# Caches
# -----------------

# (cache attribute, y field, caption, formatter)
GRAPH_FIELDS: Tuple[Tuple[str, str, str, FormatterKind], ...] = (
    ("distance_pace", "enhanced_speed", "Pace", "pace"),
    ("distance_heart_rate", "heart_rate", "Heart rate", "numeric"),
    ("distance_cadence", "cadence", "Cadence", "numeric"),
    ("distance_elevation", "enhanced_altitude", "Elevation", "numeric"),
    ("distance_temperature", "temperature", "Temperature", "numeric"),
)

X_LABELS: Dict[UnitSystem, str] = {
    "us": "Distance (miles)",
    "metric": "Distance (km)",
    "none": "",
}

Y_LABELS: Dict[str, Dict[UnitSystem, str]] = {
    "enhanced_speed": {"us": "Pace (min/mile)", "metric": "Pace (min/km)", "none": ""},
    "heart_rate": {"us": "Heart rate (bpm)", "metric": "Heart rate (bpm)", "none": ""},
    "cadence": {"us": "Cadence", "metric": "Cadence", "none": ""},
    "enhanced_altitude": {"us": "Elevation (feet)", "metric": "Elevation (m)", "none": ""},
    "temperature": {"us": "Temperature (°F)", "metric": "Temperature (°C)", "none": ""},
}


def build_graph_cache(
    records: Sequence[TelemetryRecord],
    units: UnitSystem,
    zoom_x: float = 1.0,
    zoom_y: float = 1.0,
) -> GraphCache:
    """Extract, convert and range every graph series once for (units, zoom).

    Raises InvalidZoomError for zoom below MIN_ZOOM and TimestampParseError if
    a record timestamp cannot be parsed.
    """
    if not (zoom_x >= MIN_ZOOM and zoom_y >= MIN_ZOOM):
        raise InvalidZoomError(f"Invalid zoom ({zoom_x}, {zoom_y}); must be >= {MIN_ZOOM}")
    built: Dict[str, GraphSeries] = {}
    for key, y_field, caption, fmt in GRAPH_FIELDS:
        xy = get_xy(records, units, "distance", y_field)
        built[key] = GraphSeries(
            plotvals=xy,
            caption=caption,
            xlabel=X_LABELS[units],
            ylabel=Y_LABELS[y_field][units],
            plot_range=set_plot_range(xy, zoom_x, zoom_y),
            y_format=fmt,
        )
    time_stamps = get_timestamps(records)
    logging.debug(
        "Graph cache built: units=%s zoom=(%.2f, %.2f) samples=%s timestamps=%d",
        units,
        zoom_x,
        zoom_y,
        ",".join(str(len(s)) for s in built.values()),
        len(time_stamps),
    )
    return GraphCache(
        time_stamps=time_stamps,
        units=units,
        zoom_x=zoom_x,
        zoom_y=zoom_y,
        **built,
    )


def build_map_cache(records: Sequence[TelemetryRecord]) -> MapCache:
    # Positions stay in semicircles; float64 keeps sub-metre precision.
    run_path = get_xy(records, "none", "position_lat", "position_long", dtype=np.float64)
    logging.debug("Map cache built: %d positions", len(run_path))
    return MapCache(run_path=run_path)


def map_center(records: Sequence[TelemetryRecord]) -> Tuple[float, float]:
    """Center of the session bounding box in degrees, or DEFAULT_MAP_CENTER."""
    nec_lat = get_sess_record_field(records, "nec_lat")
    nec_long = get_sess_record_field(records, "nec_long")
    swc_lat = get_sess_record_field(records, "swc_lat")
    swc_long = get_sess_record_field(records, "swc_long")
    if None in (nec_lat, nec_long, swc_lat, swc_long):
        return DEFAULT_MAP_CENTER
    lat = (semi_to_degrees(nec_lat) + semi_to_degrees(swc_lat)) / 2.0  # type: ignore[arg-type]
    lon = (semi_to_degrees(nec_long) + semi_to_degrees(swc_long)) / 2.0  # type: ignore[arg-type]
    return lat, lon


def path_degrees(map_cache: MapCache) -> np.ndarray:
    return map_cache.run_path * (180.0 / SEMICIRCLES_PER_180)


def path_endpoints(
    map_cache: MapCache,
) -> Optional[Tuple[Tuple[float, float], Tuple[float, float]]]:
    if len(map_cache) == 0:
        return None
    first = map_cache.run_path[0]
    last = map_cache.run_path[-1]
    return (
        (semi_to_degrees(first[0]), semi_to_degrees(first[1])),
        (semi_to_degrees(last[0]), semi_to_degrees(last[1])),
    )


# -----------------
# Scrubbing
# -----------------

def scrub_index(position: float, n: int) -> int:
    """Index of a normalized cursor into an array of length n (0 when empty)."""
    if n <= 0:
        return 0
    p = min(max(float(position), 0.0), 1.0)
    return int(math.floor(p * (n - 1)))


def is_interior(idx: int, n: int) -> bool:
    return 0 < idx < n - 1


def interior_index(position: float, n: int) -> Optional[int]:
    """Scrub index, or None at the first/last sample where overlays are hidden."""
    idx = scrub_index(position, n)
    return idx if is_interior(idx, n) else None


def hairline_for(series: GraphSeries, position: float) -> Optional[Hairline]:
    idx = interior_index(position, len(series))
    if idx is None:
        return None
    x = float(series.plotvals[idx, 0])
    y = float(series.plotvals[idx, 1])
    label = f"{series.xlabel}: {x:<5.2f}{series.ylabel}: {series.format_y(y)}"
    y_min, y_max = series.plot_range.y
    return Hairline(x=x, y=y, y_min=y_min, y_max=y_max, label=label)


def resolve_scrub(position: float, graph_cache: GraphCache, map_cache: MapCache) -> ScrubState:
    """Resolve one cursor against every cache array independently.

    The arrays differ in length after alignment repair, so each gets its own
    index.
    """
    series_index: Dict[str, int] = {}
    hairlines: Dict[str, Optional[Hairline]] = {}
    for key, series in graph_cache.series():
        series_index[key] = scrub_index(position, len(series))
        hairlines[key] = hairline_for(series, position)

    n_ts = len(graph_cache.time_stamps)
    ts_idx = scrub_index(position, n_ts)
    timestamp = graph_cache.time_stamps[ts_idx] if 0 < ts_idx < n_ts else None

    n_map = len(map_cache)
    map_idx = scrub_index(position, n_map)
    marker: Optional[Tuple[float, float]] = None
    if is_interior(map_idx, n_map):
        lat, lon = map_cache.run_path[map_idx]
        marker = (semi_to_degrees(lat), semi_to_degrees(lon))

    return ScrubState(
        position=position,
        series_index=series_index,
        hairlines=hairlines,
        timestamp_index=ts_idx,
        timestamp=timestamp,
        map_index=map_idx,
        marker=marker,
    )


# -----------------
# FIT parsing utils
# -----------------

def records_from_fit(fit: Any) -> List[TelemetryRecord]:
    out: List[TelemetryRecord] = []
    for msg in fit.get_messages():
        fields = tuple(Field(fd.name, fd.value, fd.units or "") for fd in msg.fields)
        out.append(TelemetryRecord(str(msg.name), fields))
    return out


def load_fit_records(fit_path: str) -> List[TelemetryRecord]:
    fit = FitFile(fit_path)
    fit.parse()
    records = records_from_fit(fit)
    logging.info("Parsed %d messages from %s", len(records), fit_path)
    return records
