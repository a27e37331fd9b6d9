from __future__ import annotations

import unittest

from marketrun.integrations.maps.haversine_provider import HaversineMapsProvider
from marketrun.services.geo_service import Coordinate, distance_km, haversine_km


class _BrokenMapsProvider:
    name = "broken"

    def calculate_distance(self, origin, destination):
        raise RuntimeError("quota exceeded")


class _NegativeMapsProvider:
    name = "negative"

    def calculate_distance(self, origin, destination):
        return {"distance": -3.0}


class GeoServiceTestCase(unittest.TestCase):
    def test_same_point_is_zero(self):
        self.assertEqual(haversine_km((0, 0), (0, 0)), 0.0)

    def test_distance_is_symmetric(self):
        a = (6.5244, 3.3792)
        b = (6.4474, 3.3903)
        self.assertAlmostEqual(haversine_km(a, b), haversine_km(b, a), places=9)

    def test_one_degree_latitude(self):
        d = haversine_km((0.0, 0.0), (1.0, 0.0))
        self.assertLess(abs(d - 111.19) / 111.19, 0.01)

    def test_accepts_dicts_and_coordinates(self):
        a = {"latitude": 6.5, "longitude": 3.3}
        b = Coordinate(6.5, 3.4)
        self.assertAlmostEqual(haversine_km(a, b), haversine_km((6.5, 3.3), (6.5, 3.4)), places=9)

    def test_provider_distance_used_when_available(self):
        d = distance_km((6.5, 3.3), (6.6, 3.3), HaversineMapsProvider())
        self.assertAlmostEqual(d, haversine_km((6.5, 3.3), (6.6, 3.3)), places=6)

    def test_falls_back_to_haversine_when_provider_fails(self):
        expected = haversine_km((6.5, 3.3), (6.6, 3.3))
        with self.assertLogs("marketrun.services.geo_service", level="WARNING") as logs:
            d = distance_km((6.5, 3.3), (6.6, 3.3), _BrokenMapsProvider())
        self.assertAlmostEqual(d, expected, places=9)
        self.assertTrue(any("distance_fallback_haversine" in line for line in logs.output))

    def test_rejects_negative_provider_distance(self):
        expected = haversine_km((6.5, 3.3), (6.6, 3.3))
        self.assertAlmostEqual(distance_km((6.5, 3.3), (6.6, 3.3), _NegativeMapsProvider()), expected, places=9)


if __name__ == "__main__":
    unittest.main()
