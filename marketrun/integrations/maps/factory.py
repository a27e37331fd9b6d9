from __future__ import annotations

from marketrun.integrations.common import IntegrationMisconfiguredError, provider_name, require_env
from marketrun.integrations.maps.base import MapsProvider
from marketrun.integrations.maps.google_provider import GoogleMapsProvider
from marketrun.integrations.maps.haversine_provider import HaversineMapsProvider


def build_maps_provider() -> MapsProvider:
    provider = provider_name("MAPS_PROVIDER", "haversine")
    if provider == "haversine":
        return HaversineMapsProvider()
    if provider != "google":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:maps_provider={provider}")
    return GoogleMapsProvider(api_key=require_env("google_maps", "GOOGLE_MAPS_API_KEY")["GOOGLE_MAPS_API_KEY"])
