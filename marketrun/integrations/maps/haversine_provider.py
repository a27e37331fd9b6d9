from __future__ import annotations

from marketrun.integrations.maps.base import MapsProvider


class HaversineMapsProvider(MapsProvider):
    name = "haversine"

    def calculate_distance(self, origin, destination) -> dict:
        from marketrun.services.geo_service import haversine_km

        return {"distance": haversine_km(origin, destination)}
