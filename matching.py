"""
Provider matching for shipment requests.

Two strategies are available:

- ``position``: every approved provider, in directory order, gets
  ``95 - 7 * index`` as its match percentage. The request is not consulted.
  There is no floor, so long directories produce negative percentages.
- ``scored``: each approved provider is scored against the request's vehicle
  type and addresses plus its own track record, and the best three are kept.
"""
from typing import Iterable, List

from schemas import MatchedProvider, Provider, ProviderStatus, ServiceArea, ShipmentRequest

BASE_PERCENTAGE = 95
PERCENTAGE_STEP = 7
SCORED_LIMIT = 3


def _approved(providers: Iterable[Provider]) -> List[Provider]:
    return [p for p in providers if p.status == ProviderStatus.APPROVED]


def _annotate(provider: Provider, percentage: int) -> MatchedProvider:
    return MatchedProvider(**provider.model_dump(), match_percentage=percentage)


def match_by_position(providers: Iterable[Provider]) -> List[MatchedProvider]:
    return [
        _annotate(provider, BASE_PERCENTAGE - PERCENTAGE_STEP * index)
        for index, provider in enumerate(_approved(providers))
    ]


def serves_route(provider: Provider, request: ShipmentRequest) -> bool:
    if ServiceArea.NATIONWIDE in provider.service_areas:
        return True
    pickup = request.pickup_address.lower()
    delivery = request.delivery_address.lower()
    for area in provider.service_areas:
        name = area.value.lower()
        if name in pickup or name in delivery:
            return True
    return False


def score_provider(provider: Provider, request: ShipmentRequest) -> float:
    score = 0.0
    if request.vehicle_type in provider.vehicle_types:
        score += 40
    if serves_route(provider, request):
        score += 30
    score += provider.on_time_rate / 5
    score += min(provider.completed_jobs, 20)
    score += max(0.0, 10 - provider.response_time * 5)
    return score


def match_by_score(request: ShipmentRequest, providers: Iterable[Provider], limit: int = SCORED_LIMIT) -> List[MatchedProvider]:
    scored = [(score_provider(p, request), p) for p in _approved(providers)]
    # sorted() is stable, so ties keep directory order
    scored = sorted(scored, key=lambda item: item[0], reverse=True)[:limit]
    return [_annotate(p, round(score)) for score, p in scored]
