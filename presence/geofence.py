"""
Home geofence for HomeGate.

Turns a location fix and the current Wi-Fi network into the single
"at home" boolean the policy engine consumes. Either signal suffices:
an exact match on the stored network name OR a fix within the home
radius.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import config

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371008.8


@dataclass(frozen=True)
class HomeProfile:
    """Stored home location. Replaced wholesale on re-configuration."""

    latitude: float
    longitude: float
    wifi_ssid: str = ""
    radius_meters: float = config.HOME_RADIUS_METERS

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude out of range: {self.longitude}")

    @property
    def has_wifi(self) -> bool:
        return bool(self.wifi_ssid)


def normalize_ssid(ssid: Optional[str]) -> str:
    """Strip the surrounding quotes some platforms report around SSIDs."""
    if not ssid:
        return ""
    ssid = ssid.strip()
    if len(ssid) >= 2 and ssid.startswith('"') and ssid.endswith('"'):
        ssid = ssid[1:-1]
    return ssid


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two coordinates (haversine).

    Returns:
        Distance in meters.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(a)))


def is_at_home(profile: Optional[HomeProfile],
               latitude: Optional[float] = None,
               longitude: Optional[float] = None,
               wifi_ssid: Optional[str] = None) -> bool:
    """
    Decide whether the device is at home.

    Args:
        profile: Configured home profile, or None if setup is incomplete.
        latitude: Current latitude, None if no fix is available.
        longitude: Current longitude, None if no fix is available.
        wifi_ssid: Currently connected network name, if any.

    Returns:
        True if the Wi-Fi network matches OR the fix is inside the radius.
    """
    if profile is None:
        return False

    wifi_at_home = False
    if profile.has_wifi:
        wifi_at_home = normalize_ssid(wifi_ssid) == normalize_ssid(profile.wifi_ssid)

    gps_at_home = False
    if latitude is not None and longitude is not None:
        distance = distance_meters(profile.latitude, profile.longitude, latitude, longitude)
        gps_at_home = distance <= profile.radius_meters
        logger.debug(f"Distance from home: {distance:.1f}m (radius {profile.radius_meters}m)")

    return gps_at_home or wifi_at_home
