#!/usr/bin/env python3
"""Local tangent-plane geometry helpers for short-horizon traffic prediction."""

from __future__ import annotations

import math
from typing import Sequence, Tuple

import numpy as np


NM_PER_DEG_LAT = 60.0
FT_PER_NM = 6076.12
_MIN_COS_LAT = 1e-6


def nm_per_deg_lon(ref_lat_deg: float) -> float:
    return NM_PER_DEG_LAT * max(_MIN_COS_LAT, math.cos(math.radians(float(ref_lat_deg))))


def to_local_nm(lat: float, lon: float, ref_lat: float, ref_lon: float) -> Tuple[float, float]:
    """Project (lat, lon) to (east, north) nautical miles around a reference point."""

    east = (float(lon) - float(ref_lon)) * nm_per_deg_lon(ref_lat)
    north = (float(lat) - float(ref_lat)) * NM_PER_DEG_LAT
    return east, north


def from_local_nm(east, north, ref_lat: float, ref_lon: float):
    lat = float(ref_lat) + np.asarray(north, dtype=np.float64) / NM_PER_DEG_LAT
    lon = float(ref_lon) + np.asarray(east, dtype=np.float64) / nm_per_deg_lon(ref_lat)
    return lat, lon


def velocity_nm_s(ground_speed_kts: float, heading_deg: float) -> Tuple[float, float]:
    speed = float(ground_speed_kts) / 3600.0
    heading = math.radians(float(heading_deg))
    return speed * math.sin(heading), speed * math.cos(heading)


def bearing_deg(east: float, north: float) -> float:
    return math.degrees(math.atan2(float(east), float(north))) % 360.0


def heading_difference_deg(a: float, b: float) -> float:
    return abs((float(a) - float(b) + 180.0) % 360.0 - 180.0)


def horizontal_distance_nm(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    ref_lat = 0.5 * (float(lat1) + float(lat2))
    dx = (float(lon2) - float(lon1)) * nm_per_deg_lon(ref_lat)
    dy = (float(lat2) - float(lat1)) * NM_PER_DEG_LAT
    return math.hypot(dx, dy)


def horizontal_distances_nm(lat1: np.ndarray, lon1: np.ndarray, lat2: np.ndarray, lon2: np.ndarray) -> np.ndarray:
    ref_lat = 0.5 * (lat1 + lat2)
    cos_lat = np.maximum(_MIN_COS_LAT, np.cos(np.radians(ref_lat)))
    dx = (lon2 - lon1) * NM_PER_DEG_LAT * cos_lat
    dy = (lat2 - lat1) * NM_PER_DEG_LAT
    return np.hypot(dx, dy)


def point_in_polygon(lat: float, lon: float, polygon: Sequence[Tuple[float, float]]) -> bool:
    """Ray casting with longitude as x and latitude as y."""

    n = len(polygon)
    if n < 3:
        return False
    x = float(lon)
    y = float(lat)
    inside = False
    j = n - 1
    for i in range(n):
        yi, xi = polygon[i]
        yj, xj = polygon[j]
        if (yi > y) != (yj > y):
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def polygon_bounds(polygon: Sequence[Tuple[float, float]]) -> Tuple[float, float, float, float]:
    lats = [float(p[0]) for p in polygon]
    lons = [float(p[1]) for p in polygon]
    return min(lats), min(lons), max(lats), max(lons)


def within_bounds_margin(
    lat: float,
    lon: float,
    bounds: Tuple[float, float, float, float],
    margin_nm: float,
) -> bool:
    min_lat, min_lon, max_lat, max_lon = bounds
    margin_lat = max(0.0, float(margin_nm)) / NM_PER_DEG_LAT
    margin_lon = max(0.0, float(margin_nm)) / nm_per_deg_lon(lat)
    return (
        min_lat - margin_lat <= float(lat) <= max_lat + margin_lat
        and min_lon - margin_lon <= float(lon) <= max_lon + margin_lon
    )


def polygon_centroid(polygon: Sequence[Tuple[float, float]]) -> Tuple[float, float]:
    """Vertex mean; adequate for the convex sector shapes in use."""

    lats = [float(p[0]) for p in polygon]
    lons = [float(p[1]) for p in polygon]
    return sum(lats) / len(lats), sum(lons) / len(lons)
