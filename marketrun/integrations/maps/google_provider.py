from __future__ import annotations

import requests

from marketrun.integrations.maps.base import MapsProvider


DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"


class GoogleMapsProvider(MapsProvider):
    name = "google"

    def __init__(self, *, api_key: str, timeout: float = 6.0):
        self.api_key = api_key
        self.timeout = timeout

    def calculate_distance(self, origin, destination) -> dict:
        params = {
            "origins": f"{float(origin[0])},{float(origin[1])}",
            "destinations": f"{float(destination[0])},{float(destination[1])}",
            "units": "metric",
            "key": self.api_key,
        }
        r = requests.get(DISTANCE_MATRIX_URL, params=params, timeout=self.timeout)
        j = r.json() if r.content else {}
        if r.status_code != 200 or (j.get("status") or "") != "OK":
            raise RuntimeError(f"GOOGLE_DISTANCE_FAILED:{j.get('status') or r.status_code}")
        rows = j.get("rows") or []
        elements = (rows[0].get("elements") if rows else None) or []
        element = elements[0] if elements else {}
        if (element.get("status") or "") != "OK":
            raise RuntimeError(f"GOOGLE_DISTANCE_FAILED:{element.get('status') or 'NO_ELEMENT'}")
        meters = float((element.get("distance") or {}).get("value") or 0.0)
        return {"distance": meters / 1000.0, "raw": element}
