from __future__ import annotations


class MapsProvider:
    name = "unknown"

    def calculate_distance(self, origin, destination) -> dict:
        """Return ``{"distance": km}`` between two ``(latitude, longitude)`` pairs."""
        raise NotImplementedError
