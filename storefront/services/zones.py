"""Delivery zone resolution: nearest enclosing circle around the warehouse."""
from collections import namedtuple
import math

Coordinate = namedtuple('Coordinate', 'lat lng')

EARTH_RADIUS_KM = 6371.0


def distance_km(origin, destination):
    """Great-circle (haversine) distance between two coordinates."""
    lat1, lng1 = math.radians(origin.lat), math.radians(origin.lng)
    lat2, lng2 = math.radians(destination.lat), math.radians(destination.lng)
    dlat = lat2 - lat1
    dlng = lng2 - lng1

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def resolve_zone(warehouse, destination, zones):
    """First active zone, by ascending radius, whose radius covers the destination.

    ``zones`` are DeliveryZone rows or anything with ``radius_km`` and
    ``active``. Returns ``(zone, distance)``; zone is None when out of range.
    """
    distance = distance_km(warehouse, destination)
    for zone in sorted((z for z in zones if z.active), key=lambda z: z.radius_km):
        if zone.radius_km >= distance:
            return zone, distance
    return None, distance


def delivery_fee(zone, units):
    return zone.base_fee_cents + zone.per_unit_fee_cents * units
