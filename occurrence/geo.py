"""
Great-circle distance helpers.

All distances in the pipeline use the haversine formula on a spherical
Earth; there is no ellipsoidal correction.
"""

import numpy as np

# Mean Earth radius in kilometres
EARTH_RADIUS_KM = 6371.0088


def haversine_km(lat1, lon1, lat2, lon2):
    """
    Haversine distance in kilometres.

    Accepts scalars or numpy arrays (broadcast against each other).

    Args:
        lat1, lon1: First point(s) in decimal degrees
        lat2, lon2: Second point(s) in decimal degrees

    Returns:
        Distance(s) in kilometres
    """
    p1 = np.radians(lat1)
    p2 = np.radians(lat2)
    dlat = p2 - p1
    dlon = np.radians(np.asarray(lon2) - np.asarray(lon1))
    a = np.sin(dlat / 2.0) ** 2 + np.cos(p1) * np.cos(p2) * np.sin(dlon / 2.0) ** 2
    # Rounding can push a marginally above 1 for antipodal points
    return 2 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def km_to_degrees_lat(km: float) -> float:
    """Latitude span in degrees covered by `km` kilometres."""
    return float(np.degrees(km / EARTH_RADIUS_KM))
