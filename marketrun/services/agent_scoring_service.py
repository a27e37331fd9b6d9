"""Ranks eligible agents for an order's market.

Score components per agent, summed:

* market workload: 1-2 active orders in the target market +1000, 3 or more
  -1000; otherwise 1-2 active elsewhere +200, 3 or more -200; idle +50
* proximity of the nearest active location: <=2 km +100, <=5 km +80,
  <=10 km +60, <=20 km +40; +50 once if a service area covers the market
* live current location within 1/3/5 km: +30/+20/+10
* tenure: account older than 30 days +10, older than 7 days +5

Agents with a negative total are never returned.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from marketrun.extensions import db
from marketrun.integrations.common import IntegrationMisconfiguredError
from marketrun.integrations.maps.factory import build_maps_provider
from marketrun.models import Market, Order, ShoppingList, User
from marketrun.services.agent_service import get_eligible_agents
from marketrun.services.geo_service import Coordinate, distance_km, haversine_km
from marketrun.services.order_lifecycle_service import OrderStatus
from marketrun.utils.dispatch_settings import get_dispatch_settings
from marketrun.utils.errors import NotFoundError

logger = logging.getLogger(__name__)

PROXIMITY_TIERS = ((2.0, 100), (5.0, 80), (10.0, 60), (20.0, 40))
LIVE_LOCATION_TIERS = ((1.0, 30), (3.0, 20), (5.0, 10))
SERVICE_AREA_BONUS = 50


@dataclass
class ScoredAgent:
    agent: User
    score: int
    distance_km: float | None
    breakdown: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "agent_id": int(self.agent.id),
            "name": self.agent.full_name,
            "score": int(self.score),
            "distance_km": round(self.distance_km, 3) if self.distance_km is not None else None,
            "breakdown": dict(self.breakdown),
        }


@dataclass(frozen=True)
class Found:
    agents: list
    radius_km: float


@dataclass(frozen=True)
class NotFound:
    max_radius_km: float


AgentSearchResult = Found | NotFound


def _maps_provider():
    try:
        return build_maps_provider()
    except IntegrationMisconfiguredError as e:
        logger.warning("maps_provider_unavailable err=%s", e)
        return None


def active_order_counts(agent_ids) -> dict:
    """``{agent_id: {market_id: count}}`` for orders in accepted or in_progress."""
    ids = [int(a) for a in agent_ids]
    counts: dict = defaultdict(lambda: defaultdict(int))
    if not ids:
        return counts
    rows = (
        db.session.query(Order.agent_id, ShoppingList.market_id, db.func.count(Order.id))
        .join(ShoppingList, ShoppingList.id == Order.shopping_list_id)
        .filter(Order.agent_id.in_(ids), Order.status.in_(tuple(OrderStatus.ACTIVE_FOR_WORKLOAD)))
        .group_by(Order.agent_id, ShoppingList.market_id)
        .all()
    )
    for agent_id, market_id, count in rows:
        counts[int(agent_id)][market_id] += int(count)
    return counts


def _workload_points(per_market: dict, market_id: int, capacity: int) -> int:
    in_market = int(per_market.get(market_id, 0))
    elsewhere = sum(int(c) for m, c in per_market.items() if m != market_id)
    if in_market >= capacity:
        return -1000
    if in_market > 0:
        return 1000
    if elsewhere >= capacity:
        return -200
    if elsewhere > 0:
        return 200
    return 50


def _tier_points(distance: float | None, tiers) -> int:
    if distance is None:
        return 0
    for limit, points in tiers:
        if distance <= limit:
            return points
    return 0


def _tenure_points(created_at: datetime | None, now: datetime) -> int:
    if created_at is None:
        return 0
    age_days = (now - created_at).total_seconds() / 86400.0
    if age_days > 30:
        return 10
    if age_days > 7:
        return 5
    return 0


def score_agent(agent: User, target: Coordinate, market_id: int, per_market: dict, *, maps_provider=None, now=None) -> ScoredAgent:
    settings = get_dispatch_settings()
    now = now or datetime.utcnow()
    locations = [loc for loc in (agent.locations or []) if loc.is_active]

    workload = _workload_points(per_market, market_id, settings.market_capacity)

    nearest = None
    covers_market = False
    live_distance = None
    for loc in locations:
        d = distance_km(Coordinate(loc.latitude, loc.longitude), target, maps_provider)
        if nearest is None or d < nearest:
            nearest = d
        if loc.location_type == "current_location":
            live_distance = d if live_distance is None else min(live_distance, d)
        elif d <= float(loc.radius or 0.0):
            covers_market = True

    proximity = _tier_points(nearest, PROXIMITY_TIERS)
    service_area = SERVICE_AREA_BONUS if covers_market else 0
    live = _tier_points(live_distance, LIVE_LOCATION_TIERS)
    tenure = _tenure_points(agent.created_at, now)

    breakdown = {
        "workload": workload,
        "proximity": proximity,
        "service_area": service_area,
        "live_location": live,
        "tenure": tenure,
        "active_in_market": int(per_market.get(market_id, 0)),
        "active_elsewhere": sum(int(c) for m, c in per_market.items() if m != market_id),
    }
    total = workload + proximity + service_area + live + tenure
    return ScoredAgent(agent=agent, score=total, distance_km=nearest, breakdown=breakdown)


def rank_agents_for_market(market: Market, exclude_agent_ids=(), *, limit: int | None = None) -> list[ScoredAgent]:
    if market is None or not market.has_location:
        return []
    settings = get_dispatch_settings()
    top_n = settings.top_candidates if limit is None else max(1, int(limit))
    candidates = get_eligible_agents(exclude_agent_ids)
    if not candidates:
        return []
    target = Coordinate(float(market.latitude), float(market.longitude))
    counts = active_order_counts(a.id for a in candidates)
    maps_provider = _maps_provider()
    now = datetime.utcnow()

    scored = []
    for agent in candidates:
        result = score_agent(agent, target, market.id, counts.get(int(agent.id), {}), maps_provider=maps_provider, now=now)
        if result.score < 0:
            continue
        scored.append(result)

    scored.sort(key=lambda s: (-s.score, s.distance_km if s.distance_km is not None else float("inf"), int(s.agent.id)))
    logger.info(
        "agents_ranked market_id=%s candidates=%s kept=%s top=%s",
        market.id,
        len(candidates),
        len(scored),
        [int(s.agent.id) for s in scored[:top_n]],
    )
    return scored[:top_n]


def get_available_agents_for_order(shopping_list_id, exclude_agent_ids=()) -> list[ScoredAgent]:
    sl = db.session.get(ShoppingList, int(shopping_list_id))
    if sl is None:
        raise NotFoundError("Shopping list not found")
    market = sl.market
    if market is None or not market.has_location:
        logger.warning("market_without_location shopping_list_id=%s market_id=%s", sl.id, sl.market_id)
        return []
    return rank_agents_for_market(market, exclude_agent_ids)


def _nearest_distance(agent: User, point: Coordinate) -> float | None:
    distances = [
        haversine_km(Coordinate(loc.latitude, loc.longitude), point)
        for loc in (agent.locations or [])
        if loc.is_active
    ]
    return min(distances) if distances else None


def find_nearby_agents(latitude, longitude, initial_radius=None, max_radius=None, step=None, limit=None, exclude_agent_ids=()) -> AgentSearchResult:
    """Widen the search radius step by step until some eligible agent is inside it."""
    settings = get_dispatch_settings()
    radius = float(initial_radius if initial_radius is not None else settings.search_initial_radius_km)
    ceiling = float(max_radius if max_radius is not None else settings.search_max_radius_km)
    increment = float(step if step is not None else settings.search_radius_step_km)
    cap = int(limit if limit is not None else settings.search_limit)
    if radius <= 0 or increment <= 0 or ceiling < radius:
        raise ValueError("invalid search radius bounds")

    point = Coordinate(float(latitude), float(longitude))
    measured = []
    for agent in get_eligible_agents(exclude_agent_ids):
        d = _nearest_distance(agent, point)
        if d is not None:
            measured.append((d, int(agent.id), agent))
    measured.sort(key=lambda item: (item[0], item[1]))

    while radius <= ceiling:
        inside = [agent for d, _, agent in measured if d <= radius]
        if inside:
            return Found(agents=inside[:cap], radius_km=radius)
        radius += increment
    return NotFound(max_radius_km=ceiling)


def find_nearest_agent(latitude, longitude, exclude_agent_ids=()) -> User | None:
    result = find_nearby_agents(latitude, longitude, limit=1, exclude_agent_ids=exclude_agent_ids)
    if isinstance(result, Found):
        return result.agents[0]
    return None
