import logging

from .zones import Coordinate

logger = logging.getLogger(__name__)


class Geocoder:
    """Resolves a free-text address to a Coordinate, or None when unknown."""

    def resolve(self, address):
        raise NotImplementedError


class NullGeocoder(Geocoder):
    def resolve(self, address):
        logger.info('No geocoder configured, cannot resolve %r', address)
        return None


class StaticGeocoder(Geocoder):
    """Lookup table keyed by normalised address. Useful for fixed depots and tests."""

    def __init__(self, mapping=None):
        self.mapping = {}
        for address, point in (mapping or {}).items():
            self.add(address, *point)

    @staticmethod
    def _key(address):
        return ' '.join(address.lower().split())

    def add(self, address, lat, lng):
        self.mapping[self._key(address)] = Coordinate(lat, lng)

    def resolve(self, address):
        return self.mapping.get(self._key(address))
