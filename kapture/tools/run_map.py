"""Render a run's raw fixes, validated track and captured area on a map."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import folium  # Using folium to build an interactive Leaflet map.

from ..models import CapturedPolygon, LocationPoint

LatLon = Tuple[float, float]
PathLike = Union[str, Path]

_RAW_COLOR = "#9e9e9e"
_TRACK_COLOR = "#2c7bb6"
_AREA_COLOR = "#1a9641"
_START_COLOR = "#1a9641"
_END_COLOR = "#d73027"


def _latlon(points: Sequence[LocationPoint]) -> List[LatLon]:
    return [(p.latitude, p.longitude) for p in points]


def create_run_map(
    raw_locations: Sequence[LocationPoint],
    track: Sequence[LocationPoint],
    polygon: Optional[CapturedPolygon] = None,
    *,
    output_html_path: Optional[PathLike] = None,
) -> folium.Map:
    """Create an interactive map of one run.

    Args:
        raw_locations: Every fix the provider delivered, accepted or not.
        track: The validated track used for distance and area.
        polygon: Optional captured-area ring drawn as a filled polygon.
        output_html_path: Optional path to persist the map as an HTML file.

    Returns:
        A :class:`folium.Map` with the overlays added.

    Raises:
        ValueError: If there are no points to draw.
    """

    raw_coords = _latlon(raw_locations)
    track_coords = _latlon(track)
    if not raw_coords and not track_coords:
        raise ValueError("A run map needs at least one location")

    center = (track_coords or raw_coords)[0]
    folium_map = folium.Map(location=center, zoom_start=16, control_scale=True)

    if len(raw_coords) >= 2:
        folium.PolyLine(
            raw_coords,
            color=_RAW_COLOR,
            weight=2,
            opacity=0.6,
            dash_array="4",
            tooltip="Raw fixes",
        ).add_to(folium_map)
    if len(track_coords) >= 2:
        folium.PolyLine(
            track_coords,
            color=_TRACK_COLOR,
            weight=4,
            opacity=0.8,
            tooltip="Validated track",
        ).add_to(folium_map)

    if polygon is not None and polygon.area_m2 > 0:
        label = f"Captured area: {polygon.area_m2:,.0f} m²"
        if polygon.is_loop:
            label += " (loop)"
        folium.Polygon(
            list(polygon.coordinates),
            color=_AREA_COLOR,
            weight=2,
            fill=True,
            fill_color=_AREA_COLOR,
            fill_opacity=0.2,
            tooltip=label,
        ).add_to(folium_map)

    if track_coords:
        folium.CircleMarker(
            location=track_coords[0],
            radius=6,
            color=_START_COLOR,
            fill=True,
            fill_color=_START_COLOR,
            tooltip="Start",
        ).add_to(folium_map)
        folium.CircleMarker(
            location=track_coords[-1],
            radius=6,
            color=_END_COLOR,
            fill=True,
            fill_color=_END_COLOR,
            tooltip="Finish",
        ).add_to(folium_map)

    if output_html_path is not None:
        output_path = Path(output_html_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        folium_map.save(str(output_path))

    return folium_map


__all__ = ["create_run_map"]
