"""Spherical-Earth geodesy helpers shared by every prediction model.

All functions are pure. Angles are degrees, distances metres, and the Earth is
a sphere of radius 6_378_137 m (WGS-84 equatorial radius).

Formulas
--------
- Distance: haversine in its atan2 form, which stays well conditioned for
  identical and antipodal points.
- Bearing: initial navigation bearing, normalised to [0, 360), 0° = North,
  90° = East.
- Destination: forward great-circle projection. Returns ``None`` instead of
  a wrapped or NaN coordinate when the inputs are not usable; callers must
  check the result.
- Circular mean: ``atan2(sum(sin), sum(cos))``; headings wrap at 360°, so an
  arithmetic mean of 359° and 1° would wrongly give 180°.
"""

from __future__ import annotations

from math import asin, atan2, cos, degrees, isfinite, pi, radians, sin, sqrt
from typing import Iterable, Optional, Sequence, Tuple

EARTH_RADIUS_M = 6_378_137.0
DEG_TO_RAD = pi / 180.0
RAD_TO_DEG = 180.0 / pi
# Metres spanned by one degree of latitude (and of longitude at the equator).
METERS_PER_DEG = EARTH_RADIUS_M * DEG_TO_RAD

LatLon = Tuple[float, float]


def _finite(*vals: float) -> bool:
    return all(isfinite(v) for v in vals)


def normalize_angle_360(angle_deg: float) -> float:
    if not isfinite(angle_deg):
        return float("nan")
    return angle_deg % 360.0


def normalize_angle_180(angle_deg: float) -> float:
    """Wrap an angle into (-180, 180]."""
    a = normalize_angle_360(angle_deg)
    return a - 360.0 if a > 180.0 else a


def normalize_longitude(lon_deg: float) -> float:
    """Wrap a longitude into [-180, 180], mapping -180 to 180."""
    if not isfinite(lon_deg):
        return lon_deg
    r = (lon_deg + 180.0) % 360.0 - 180.0
    return 180.0 if r == -180.0 else r


def distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two lat/lon points.

    Args:
        lat1, lon1: Latitude and longitude of the first point in degrees.
        lat2, lon2: Latitude and longitude of the second point in degrees.

    Returns:
        Distance in metres; 0.0 for identical points.
    """
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)
    a = sin(dlat / 2.0) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon / 2.0) ** 2
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_M * 2.0 * atan2(sqrt(a), sqrt(1.0 - a))


def bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial bearing from point 1 to point 2 in degrees [0, 360)."""
    lat1r = radians(lat1)
    lat2r = radians(lat2)
    dlon = radians(lon2 - lon1)
    y = sin(dlon) * cos(lat2r)
    x = cos(lat1r) * sin(lat2r) - sin(lat1r) * cos(lat2r) * cos(dlon)
    return (degrees(atan2(y, x)) + 360.0) % 360.0


def destination(lat: float, lon: float, distance_m: float, bearing_deg: float) -> Optional[LatLon]:
    """Point reached by travelling `distance_m` from (lat, lon) along `bearing_deg`.

    Returns:
        ``(lat, lon)`` with the longitude normalised to [-180, 180], or
        ``None`` when any input is NaN/inf, the distance is negative, or the
        result is not finite.
    """
    if not _finite(lat, lon, distance_m, bearing_deg) or distance_m < 0.0:
        return None

    brg = radians(bearing_deg)
    lat_r = radians(lat)
    lon_r = radians(lon)
    ang = distance_m / EARTH_RADIUS_M

    sin_lat2 = sin(lat_r) * cos(ang) + cos(lat_r) * sin(ang) * cos(brg)
    lat2_r = asin(min(1.0, max(-1.0, sin_lat2)))
    lon2_r = lon_r + atan2(sin(brg) * sin(ang) * cos(lat_r), cos(ang) - sin(lat_r) * sin(lat2_r))

    out_lat = degrees(lat2_r)
    out_lon = normalize_longitude(degrees(lon2_r))
    if not _finite(out_lat, out_lon):
        return None
    return out_lat, out_lon


def offset_point(lat: float, lon: float, heading_deg: float, cross_track_m: float) -> Optional[LatLon]:
    """Move perpendicular to `heading_deg`; positive offsets go to the right."""
    if not isfinite(cross_track_m):
        return None
    side = 90.0 if cross_track_m >= 0.0 else -90.0
    return destination(lat, lon, abs(cross_track_m), normalize_angle_360(heading_deg + side))


def circular_mean(headings_deg: Iterable[float], weights: Optional[Iterable[float]] = None) -> float:
    """Mean direction of a set of headings in degrees [0, 360).

    Returns 0.0 for an empty input.
    """
    hs = list(headings_deg)
    ws = [1.0] * len(hs) if weights is None else list(weights)
    if not hs:
        return 0.0
    s = sum(w * sin(radians(h)) for h, w in zip(hs, ws))
    c = sum(w * cos(radians(h)) for h, w in zip(hs, ws))
    return (degrees(atan2(s, c)) + 360.0) % 360.0


def heading_variance(headings_deg: Sequence[float]) -> float:
    """Mean squared wrapped deviation (deg²) of headings from their circular mean."""
    if not headings_deg:
        return 0.0
    mean = circular_mean(headings_deg)
    return sum(normalize_angle_180(h - mean) ** 2 for h in headings_deg) / len(headings_deg)


def weighted_percentile(values: Sequence[float], weights: Sequence[float], p: float) -> float:
    """Weighted percentile `p` in [0, 1] of `values`.

    Non-finite or non-positive weights are ignored. Returns NaN for invalid
    input (size mismatch, empty, p out of range, zero total weight).
    """
    if not values or len(values) != len(weights) or not (0.0 <= p <= 1.0):
        return float("nan")
    pairs = sorted((v, w) for v, w in zip(values, weights) if isfinite(w) and w > 0.0)
    if not pairs:
        return float("nan")
    total = sum(w for _, w in pairs)
    if not isfinite(total) or total <= 0.0:
        return float("nan")
    target = total * p
    acc = 0.0
    for v, w in pairs:
        acc += w
        if acc >= target:
            return v
    return pairs[-1][0]


# --- metres <-> degrees with local latitude scaling ---

def meters_to_lat_deg(meters: float) -> float:
    return meters / METERS_PER_DEG


def meters_to_lon_deg(meters: float, at_lat_deg: float) -> float:
    return meters / (METERS_PER_DEG * cos(radians(at_lat_deg)))


def lat_deg_to_meters(deg: float) -> float:
    return deg * METERS_PER_DEG


def lon_deg_to_meters(deg: float, at_lat_deg: float) -> float:
    return deg * METERS_PER_DEG * cos(radians(at_lat_deg))


__all__ = [
    "EARTH_RADIUS_M",
    "METERS_PER_DEG",
    "distance",
    "bearing",
    "destination",
    "offset_point",
    "circular_mean",
    "heading_variance",
    "weighted_percentile",
    "normalize_angle_360",
    "normalize_angle_180",
    "normalize_longitude",
    "meters_to_lat_deg",
    "meters_to_lon_deg",
    "lat_deg_to_meters",
    "lon_deg_to_meters",
]
