from __future__ import annotations

# CLI orchestration for runview. Extraction and caching live in rv_data,
# the text report in rv_summary and drawing in rv_plotting.

import logging
import os
from typing import Any, Dict, List, Optional, Tuple

import typer
from fitparse import FitParseError

from rv_data import (
    GraphCache,
    InvalidZoomError,
    MapCache,
    TelemetryRecord,
    TimestampParseError,
    UnitSystem,
    _resolve_units,
    build_graph_cache,
    build_map_cache,
    load_fit_records,
    map_center,
    resolve_scrub,
    symbol_for_records,
    units_from_index,
    units_to_index,
)
from rv_plotting import plot_graphs, plot_map
from rv_settings import ViewSettings, load_settings, save_settings
from rv_summary import build_summary


def _setup_logging(verbose: bool, log_file: Optional[str] = None) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(asctime)s [%(levelname)s] %(message)s"
    datefmt = "%H:%M:%S"
    logging.basicConfig(level=level, format=fmt, datefmt=datefmt)
    if log_file:
        fh = logging.FileHandler(log_file, mode="w")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(fmt, datefmt))
        logging.getLogger().addHandler(fh)
    # matplotlib and PIL are noisy at DEBUG
    logging.getLogger("matplotlib").setLevel(logging.WARNING)
    logging.getLogger("matplotlib.font_manager").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.INFO)


def _select_units(units: Optional[str], settings: ViewSettings) -> UnitSystem:
    if units:
        return _resolve_units(units)
    return units_from_index(settings.units_index)


def _size_px(settings: ViewSettings) -> Tuple[int, int]:
    return settings.width, settings.height


def _load(fit_file: str) -> Optional[List[TelemetryRecord]]:
    try:
        return load_fit_records(fit_file)
    except (OSError, FitParseError) as exc:
        logging.error("Unable to read %s: %s", fit_file, exc)
        return None


def _default_png(fit_file: str, suffix: str) -> str:
    base, _ = os.path.splitext(fit_file)
    return f"{base}_{suffix}.png"


def _build_caches(
    records: List[TelemetryRecord],
    units: UnitSystem,
    zoom_x: float,
    zoom_y: float,
) -> Optional[Tuple[GraphCache, MapCache]]:
    try:
        return build_graph_cache(records, units, zoom_x, zoom_y), build_map_cache(records)
    except (InvalidZoomError, TimestampParseError) as exc:
        logging.error(str(exc))
        return None


def _run_summary(fit_file: str, units: UnitSystem, output: Optional[str]) -> int:
    records = _load(fit_file)
    if records is None:
        return 2
    try:
        report = build_summary(records, units)
    except TimestampParseError as exc:
        logging.error(str(exc))
        return 3
    if output:
        with open(output, "w", encoding="utf-8") as fh:
            fh.write(report)
        logging.info("Wrote: %s", output)
    else:
        typer.echo(report, nl=False)
    return 0


def _run_graphs(
    fit_file: str,
    units: UnitSystem,
    zoom_x: float,
    zoom_y: float,
    position: Optional[float],
    png: Optional[str],
    size_px: Optional[Tuple[int, int]] = None,
) -> int:
    records = _load(fit_file)
    if records is None:
        return 2
    caches = _build_caches(records, units, zoom_x, zoom_y)
    if caches is None:
        return 3
    graph_cache, _ = caches
    out = png or _default_png(fit_file, "graphs")
    drawn = plot_graphs(graph_cache, out, position=position, size_px=size_px)
    if drawn == 0:
        logging.warning("No plottable series found in %s", fit_file)
    logging.info("Wrote plot: %s", out)
    return 0


def _run_map(
    fit_file: str,
    position: Optional[float],
    png: Optional[str],
    size_px: Optional[Tuple[int, int]] = None,
) -> int:
    records = _load(fit_file)
    if records is None:
        return 2
    try:
        symbol = symbol_for_records(records)
    except TimestampParseError as exc:
        logging.error(str(exc))
        return 3
    map_cache = build_map_cache(records)
    out = png or _default_png(fit_file, "map")
    plot_map(map_cache, out, position=position, symbol=symbol, center=map_center(records), size_px=size_px)
    logging.info("Wrote plot: %s", out)
    return 0


def _scrub_report(position: float, graph_cache: GraphCache, map_cache: MapCache) -> List[str]:
    state = resolve_scrub(position, graph_cache, map_cache)
    lines = [f"position: {position:.3f}"]
    lines.append(f"time: {state.timestamp if state.timestamp is not None else '--'}")
    if state.marker is not None:
        lines.append(f"marker: {state.marker[0]:.6f}, {state.marker[1]:.6f}")
    else:
        lines.append("marker: --")
    for key, series in graph_cache.series():
        hair = state.hairlines.get(key)
        if hair is None:
            lines.append(f"{series.caption}: --")
        else:
            lines.append(f"{series.caption}: {hair.label}")
    return lines


def _run_scrub(fit_file: str, units: UnitSystem, position: float) -> int:
    records = _load(fit_file)
    if records is None:
        return 2
    caches = _build_caches(records, units, 1.0, 1.0)
    if caches is None:
        return 3
    graph_cache, map_cache = caches
    typer.echo("\n".join(_scrub_report(position, graph_cache, map_cache)))
    return 0


def _diagnose_lines(fit_file: str, records: List[TelemetryRecord]) -> List[str]:
    kinds: Dict[str, int] = {}
    key_stats: Dict[str, Dict[str, Any]] = {}
    for rec in records:
        kinds[rec.kind] = kinds.get(rec.kind, 0) + 1
        if rec.kind != "record":
            continue
        for fld in rec.fields:
            st = key_stats.setdefault(fld.name, {"count": 0, "numeric": 0, "units": fld.units})
            st["count"] += 1
            if isinstance(fld.value, (int, float)) and not isinstance(fld.value, bool):
                st["numeric"] += 1
    lines = [f"FILE: {fit_file}", "  messages:"]
    for kind, count in sorted(kinds.items(), key=lambda kv: (-kv[1], kv[0])):
        lines.append(f"    - {kind}: {count}")
    lines.append("  record fields:")
    for name, st in sorted(key_stats.items(), key=lambda kv: (-kv[1]["count"], kv[0])):
        lines.append(f"    - {name}: count={st['count']}, numeric={st['numeric']}, units={st['units'] or '-'}")
    return lines


def _build_typer_app():  # pragma: no cover
    app = typer.Typer(add_completion=False, help="View running activity FIT files: graphs, map and summary.")

    units_help = "Unit system: metric|us|none (defaults to the saved preference)"
    settings_help = "Settings file path (defaults to $XDG_CONFIG_HOME/runview_settings.json)"

    @app.command()
    def summary(
        fit_file: str = typer.Argument(..., help="Input .fit file"),
        units: Optional[str] = typer.Option(None, "--units", "-u", help=units_help),
        output: Optional[str] = typer.Option(None, "--output", "-o", help="Write the report here instead of stdout"),
        settings_file: Optional[str] = typer.Option(None, "--settings", help=settings_help),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
        log_file: Optional[str] = typer.Option(None, "--log-file", help="Optional log file path"),
    ) -> None:
        """Print the session, lap and heart rate zone report."""
        _setup_logging(verbose, log_file=log_file)
        settings = load_settings(settings_file)
        code = _run_summary(fit_file, _select_units(units, settings), output)
        if code != 0:
            raise typer.Exit(code)

    @app.command()
    def graphs(
        fit_file: str = typer.Argument(..., help="Input .fit file"),
        units: Optional[str] = typer.Option(None, "--units", "-u", help=units_help),
        zoom_x: float = typer.Option(1.0, "--zoom-x", min=0.5, max=2.0, help="X-axis zoom"),
        zoom_y: float = typer.Option(1.0, "--zoom-y", min=0.5, max=4.0, help="Y-axis zoom"),
        position: Optional[float] = typer.Option(None, "--position", "-p", min=0.0, max=1.0, help="Scrub position in [0,1] for the hairline"),
        png: Optional[str] = typer.Option(None, "--png", help="Output PNG path (defaults next to the FIT file)"),
        settings_file: Optional[str] = typer.Option(None, "--settings", help=settings_help),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
        log_file: Optional[str] = typer.Option(None, "--log-file", help="Optional log file path"),
    ) -> None:
        """Draw pace, heart rate, cadence, elevation and temperature against distance."""
        _setup_logging(verbose, log_file=log_file)
        settings = load_settings(settings_file)
        code = _run_graphs(
            fit_file,
            _select_units(units, settings),
            zoom_x,
            zoom_y,
            position,
            png,
            size_px=_size_px(settings),
        )
        if code != 0:
            raise typer.Exit(code)

    @app.command(name="map")
    def map_(
        fit_file: str = typer.Argument(..., help="Input .fit file"),
        position: Optional[float] = typer.Option(None, "--position", "-p", min=0.0, max=1.0, help="Scrub position in [0,1] for the runner marker"),
        png: Optional[str] = typer.Option(None, "--png", help="Output PNG path (defaults next to the FIT file)"),
        settings_file: Optional[str] = typer.Option(None, "--settings", help=settings_help),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
        log_file: Optional[str] = typer.Option(None, "--log-file", help="Optional log file path"),
    ) -> None:
        """Draw the GPS path with start/stop pins."""
        _setup_logging(verbose, log_file=log_file)
        settings = load_settings(settings_file)
        code = _run_map(fit_file, position, png, size_px=_size_px(settings))
        if code != 0:
            raise typer.Exit(code)

    @app.command()
    def scrub(
        fit_file: str = typer.Argument(..., help="Input .fit file"),
        position: float = typer.Option(..., "--position", "-p", min=0.0, max=1.0, help="Scrub position in [0,1]"),
        units: Optional[str] = typer.Option(None, "--units", "-u", help=units_help),
        settings_file: Optional[str] = typer.Option(None, "--settings", help=settings_help),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
        log_file: Optional[str] = typer.Option(None, "--log-file", help="Optional log file path"),
    ) -> None:
        """Show the time, map position and graph values at one scrub position."""
        _setup_logging(verbose, log_file=log_file)
        settings = load_settings(settings_file)
        code = _run_scrub(fit_file, _select_units(units, settings), position)
        if code != 0:
            raise typer.Exit(code)

    @app.command(name="units")
    def units_(
        value: Optional[str] = typer.Argument(None, help="New default: metric|us|none"),
        settings_file: Optional[str] = typer.Option(None, "--settings", help=settings_help),
    ) -> None:
        """Show or change the default unit system."""
        settings = load_settings(settings_file)
        if value is None:
            typer.echo(units_from_index(settings.units_index))
            return
        settings.units_index = units_to_index(_resolve_units(value))
        path = save_settings(settings, settings_file)
        typer.echo(f"{units_from_index(settings.units_index)} (saved to {path})")

    @app.command()
    def diagnose(
        fit_file: str = typer.Argument(..., help="Input .fit file"),
        out: Optional[str] = typer.Option(None, "--out", "-o", help="Write the report here instead of stdout"),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
    ) -> None:
        """Summarize message kinds and record fields for debugging."""
        _setup_logging(verbose)
        records = _load(fit_file)
        if records is None:
            raise typer.Exit(2)
        text = "\n".join(_diagnose_lines(fit_file, records))
        if out:
            with open(out, "w", encoding="utf-8") as f:
                f.write(text + "\n")
            logging.info("Diagnostic report written: %s", out)
        else:
            typer.echo(text)

    return app


def main_cli() -> int:
    app = _build_typer_app()
    app()
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main_cli())
