"""
Location analytics over GPS tracking points.

Provides the distance and duration helpers shared by the report generators
and the GPS analysis used on the map:

    - Haversine distances (scalar and as a full numpy distance matrix)
    - Stop detection over time-ordered points
    - Trip summary (distance, time, speeds, moving vs stopped time)
    - Nearest-neighbour route optimisation between a fixed start and end

Tracking points are mappings with ``latitude``, ``longitude`` and one of
``created_at`` / ``createdAt`` / ``timestamp`` (datetime or ISO string).
Points must be ordered by time.

Parameters:
    - EARTH_RADIUS_KM = 6371
    - STATIONARY_SPEED_KMH = 2.0: segments slower than this count as stopped
    - Stop detection defaults: 50 m radius, 3 minute minimum
    - Route optimisation: 1-8 intermediate stops, saving reported above 0.5 km
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

EARTH_RADIUS_KM: float = 6371.0

STATIONARY_SPEED_KMH: float = 2.0

DEFAULT_STOP_RADIUS_METERS: float = 50.0
DEFAULT_MIN_STOP_MINUTES: float = 3.0

MAX_ROUTE_WAYPOINTS: int = 8
MIN_REPORTED_SAVING_KM: float = 0.5


# =============================================================================
# Distances and formatting
# =============================================================================

def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two coordinates in kilometres.

    >>> round(haversine_km(-26.2041, 28.0473, -25.7479, 28.2293), 1)
    53.9
    """
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_matrix(coordinates: Sequence[Tuple[float, float]]) -> np.ndarray:
    """
    Pairwise haversine distances (km) for ``(lat, lng)`` pairs.

    Returns:
        A symmetric ``(n, n)`` float array with a zero diagonal.
    """
    if len(coordinates) == 0:
        return np.zeros((0, 0), dtype=np.float64)

    coords = np.radians(np.asarray(coordinates, dtype=np.float64))
    lat = coords[:, 0][:, np.newaxis]
    lng = coords[:, 1][:, np.newaxis]

    d_lat = lat.T - lat
    d_lng = lng.T - lng
    a = np.sin(d_lat / 2) ** 2 + np.cos(lat) * np.cos(lat.T) * np.sin(d_lng / 2) ** 2
    return EARTH_RADIUS_KM * 2 * np.arctan2(np.sqrt(a), np.sqrt(np.clip(1 - a, 0.0, None)))


def path_distance_km(coordinates: Sequence[Tuple[float, float]]) -> float:
    """Sum of consecutive leg distances along a path."""
    if len(coordinates) < 2:
        return 0.0
    coords = np.asarray(coordinates, dtype=np.float64)
    legs = [
        haversine_km(coords[i, 0], coords[i, 1], coords[i + 1, 0], coords[i + 1, 1])
        for i in range(len(coords) - 1)
    ]
    return float(np.sum(legs))


def format_distance(distance_km: float) -> str:
    """
    >>> format_distance(0.25)
    '250 m'
    >>> format_distance(12.34)
    '12.3 km'
    """
    if distance_km < 1:
        return f"{round(distance_km * 1000)} m"
    return f"{distance_km:.1f} km"


def format_duration(minutes: float) -> str:
    """
    >>> format_duration(45)
    '45m'
    >>> format_duration(135)
    '2h 15m'
    """
    total = int(round(minutes))
    if total < 60:
        return f"{total}m"
    return f"{total // 60}h {total % 60}m"


# =============================================================================
# Tracking point access
# =============================================================================

def point_time(point: Mapping[str, Any]) -> Optional[datetime]:
    value = point.get("created_at") or point.get("createdAt") or point.get("timestamp")
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value


def _coordinates(point: Mapping[str, Any]) -> Tuple[float, float]:
    return float(point["latitude"]), float(point["longitude"])


def _minutes_between(start: Optional[datetime], end: Optional[datetime]) -> float:
    if start is None or end is None:
        return 0.0
    return max((end - start).total_seconds() / 60.0, 0.0)


# =============================================================================
# Stop detection
# =============================================================================

def _close_stop(cluster: List[Mapping[str, Any]], centre: Tuple[float, float]) -> Dict[str, Any]:
    start = point_time(cluster[0])
    end = point_time(cluster[-1])
    duration = _minutes_between(start, end)
    return {
        "latitude": round(centre[0], 6),
        "longitude": round(centre[1], 6),
        "startTime": start.isoformat() if start else None,
        "endTime": end.isoformat() if end else None,
        "durationMinutes": round(duration, 1),
        "durationFormatted": format_duration(duration),
        "pointsCount": len(cluster),
        "address": next((p.get("address") for p in cluster if p.get("address")), None),
    }


def detect_stops(
    points: Sequence[Mapping[str, Any]],
    radius_meters: float = DEFAULT_STOP_RADIUS_METERS,
    min_stop_minutes: float = DEFAULT_MIN_STOP_MINUTES,
) -> List[Dict[str, Any]]:
    """
    Group consecutive points that stay near each other into stops.

    A point within ``radius_meters`` of the running-average centre of the
    current cluster extends it; any other point closes the cluster and
    starts a new one. Clusters spanning less than ``min_stop_minutes`` are
    discarded.

    Args:
        points: Time-ordered tracking points.
        radius_meters: Maximum distance from the stop centre.
        min_stop_minutes: Minimum time spent for a cluster to count as a stop.

    Returns:
        Stops in chronological order.
    """
    stops: List[Dict[str, Any]] = []
    if not points:
        return stops

    radius_km = radius_meters / 1000.0
    cluster: List[Mapping[str, Any]] = [points[0]]
    centre = _coordinates(points[0])

    for point in points[1:]:
        lat, lng = _coordinates(point)
        if haversine_km(centre[0], centre[1], lat, lng) <= radius_km:
            cluster.append(point)
            n = len(cluster)
            centre = (centre[0] + (lat - centre[0]) / n, centre[1] + (lng - centre[1]) / n)
            continue

        if _minutes_between(point_time(cluster[0]), point_time(cluster[-1])) >= min_stop_minutes:
            stops.append(_close_stop(cluster, centre))
        cluster = [point]
        centre = (lat, lng)

    if _minutes_between(point_time(cluster[0]), point_time(cluster[-1])) >= min_stop_minutes:
        stops.append(_close_stop(cluster, centre))

    return stops


# =============================================================================
# Trip summary
# =============================================================================

def trip_summary(
    points: Sequence[Mapping[str, Any]],
    stops: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Distance, time and speed statistics for a day of tracking.

    Each leg between consecutive points is classed as moving or stopped by
    its average speed against ``STATIONARY_SPEED_KMH``.
    """
    if stops is None:
        stops = detect_stops(points)

    summary: Dict[str, Any] = {
        "totalDistanceKm": 0.0,
        "totalTimeMinutes": 0.0,
        "averageSpeedKmh": 0.0,
        "movingTimeMinutes": 0.0,
        "stoppedTimeMinutes": 0.0,
        "numberOfStops": len(stops),
        "maxSpeedKmh": 0.0,
    }
    if len(points) < 2:
        return summary

    distances = np.array([
        haversine_km(*_coordinates(points[i]), *_coordinates(points[i + 1]))
        for i in range(len(points) - 1)
    ], dtype=np.float64)
    minutes = np.array([
        _minutes_between(point_time(points[i]), point_time(points[i + 1]))
        for i in range(len(points) - 1)
    ], dtype=np.float64)

    hours = minutes / 60.0
    speeds = np.divide(distances, hours, out=np.zeros_like(distances), where=hours > 0)
    moving = speeds >= STATIONARY_SPEED_KMH

    total_distance = float(distances.sum())
    total_minutes = float(minutes.sum())

    summary.update({
        "totalDistanceKm": round(total_distance, 2),
        "totalTimeMinutes": round(total_minutes, 1),
        "averageSpeedKmh": round(total_distance / (total_minutes / 60.0), 1) if total_minutes > 0 else 0.0,
        "movingTimeMinutes": round(float(minutes[moving].sum()), 1),
        "stoppedTimeMinutes": round(float(minutes[~moving].sum()), 1),
        "maxSpeedKmh": round(float(speeds.max()), 1) if speeds.size else 0.0,
    })
    return summary


def analyze_tracking(
    points: Sequence[Mapping[str, Any]],
    radius_meters: float = DEFAULT_STOP_RADIUS_METERS,
    min_stop_minutes: float = DEFAULT_MIN_STOP_MINUTES,
) -> Dict[str, Any]:
    """Stops plus trip summary for one user's tracking points."""
    stops = detect_stops(points, radius_meters, min_stop_minutes)
    return {"stops": stops, "tripSummary": trip_summary(points, stops)}


# =============================================================================
# Route optimisation
# =============================================================================

def nearest_neighbour_order(matrix: np.ndarray, start: int = 0, end: Optional[int] = None) -> List[int]:
    """
    Greedy visiting order over ``matrix`` from ``start``.

    When ``end`` is given it is excluded from the greedy walk and appended
    last, so the route keeps its fixed destination.
    """
    n = matrix.shape[0]
    remaining = [i for i in range(n) if i != start and i != end]
    order = [start]
    while remaining:
        current = order[-1]
        nearest = min(remaining, key=lambda j: matrix[current, j])
        order.append(nearest)
        remaining.remove(nearest)
    if end is not None and end != start:
        order.append(end)
    return order


def optimize_route(
    stops: Sequence[Mapping[str, Any]],
    original_distance_km: Optional[float] = None,
) -> Optional[Dict[str, Any]]:
    """
    Suggest a shorter visiting order for a worker's stops.

    The first and last stops are fixed; the intermediate stops (1 to
    ``MAX_ROUTE_WAYPOINTS``) are re-ordered nearest-neighbour.

    Args:
        stops: Stops with ``latitude``/``longitude`` in visiting order.
        original_distance_km: Distance actually travelled; defaults to the
            straight-line path through the stops in their original order.

    Returns:
        The optimisation summary, or None when the stop count is out of range.
    """
    if len(stops) <= 2:
        return None
    intermediate = len(stops) - 2
    if intermediate < 1 or intermediate > MAX_ROUTE_WAYPOINTS:
        return None

    coordinates = [_coordinates(stop) for stop in stops]
    matrix = distance_matrix(coordinates)
    order = nearest_neighbour_order(matrix, start=0, end=len(stops) - 1)
    optimized = float(sum(matrix[order[i], order[i + 1]] for i in range(len(order) - 1)))

    if original_distance_km is None:
        original_distance_km = path_distance_km(coordinates)

    saving = max(0.0, original_distance_km - optimized)
    recommendation = (
        f"Route could be optimized to save {saving:.1f}km"
        if saving > MIN_REPORTED_SAVING_KM
        else "Current route appears well optimized"
    )

    return {
        "originalDistance": round(original_distance_km, 2),
        "optimizedDistance": round(optimized, 2),
        "potentialSaving": round(saving, 2),
        "optimizedWaypointOrder": [index - 1 for index in order[1:-1]],
        "stops": len(stops),
        "recommendation": recommendation,
    }
