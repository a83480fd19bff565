"""
Geodesic utilities for flight-log reconstruction.

All functions work on WGS84 latitude/longitude in degrees and a spherical
Earth of mean radius 6,371,000 m. They are pure and never raise for finite
input.
"""

import numpy as np
from numpy.typing import NDArray

EARTH_RADIUS_M = 6371000.0  # Earth's mean radius in meters


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate great-circle distance between two points.

    Args:
        lat1, lon1: First point coordinates in degrees
        lat2, lon2: Second point coordinates in degrees

    Returns:
        Distance in meters
    """
    lat1_rad = np.radians(lat1)
    lat2_rad = np.radians(lat2)
    dlat = np.radians(lat2 - lat1)
    dlon = np.radians(lon2 - lon1)

    a = np.sin(dlat/2)**2 + np.cos(lat1_rad) * np.cos(lat2_rad) * np.sin(dlon/2)**2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1-a))

    return float(EARTH_RADIUS_M * c)


def bearing_degrees(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Initial bearing from the first point towards the second.

    Returns:
        Compass bearing in degrees (0=North, 90=East), in [0, 360)
    """
    lat1_rad = np.radians(lat1)
    lat2_rad = np.radians(lat2)
    dlon = np.radians(lon2 - lon1)

    y = np.sin(dlon) * np.cos(lat2_rad)
    x = np.cos(lat1_rad) * np.sin(lat2_rad) - np.sin(lat1_rad) * np.cos(lat2_rad) * np.cos(dlon)

    return float(np.degrees(np.arctan2(y, x)) % 360.0)


def destination_point(
    lat: float,
    lon: float,
    bearing_deg: float,
    distance_m: float,
) -> tuple[float, float]:
    """
    Project a point along a great circle.

    Args:
        lat, lon: Origin coordinates in degrees
        bearing_deg: Initial bearing in degrees (0=North)
        distance_m: Distance to travel in meters

    Returns:
        Tuple of (lat, lon) in degrees, longitude normalized to [-180, 180)
    """
    lat_rad = np.radians(lat)
    lon_rad = np.radians(lon)
    brg = np.radians(bearing_deg)
    delta = distance_m / EARTH_RADIUS_M

    lat2 = np.arcsin(
        np.sin(lat_rad) * np.cos(delta) + np.cos(lat_rad) * np.sin(delta) * np.cos(brg)
    )
    lon2 = lon_rad + np.arctan2(
        np.sin(brg) * np.sin(delta) * np.cos(lat_rad),
        np.cos(delta) - np.sin(lat_rad) * np.sin(lat2),
    )

    lon2_deg = (np.degrees(lon2) + 540.0) % 360.0 - 180.0
    return float(np.degrees(lat2)), float(lon2_deg)


def segment_distances(
    lat: NDArray[np.float64],
    lon: NDArray[np.float64],
) -> NDArray[np.float64]:
    """
    Haversine length of each consecutive segment of a track.

    NaN coordinates produce NaN segments on either side of the gap.

    Returns:
        Array of length len(lat) - 1 (empty for fewer than two points)
    """
    lat = np.asarray(lat, dtype=np.float64)
    lon = np.asarray(lon, dtype=np.float64)
    if len(lat) < 2:
        return np.zeros(0, dtype=np.float64)

    lat1 = np.radians(lat[:-1])
    lat2 = np.radians(lat[1:])
    dlat = lat2 - lat1
    dlon = np.radians(lon[1:] - lon[:-1])

    a = np.sin(dlat/2)**2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon/2)**2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1-a))

    return EARTH_RADIUS_M * c
