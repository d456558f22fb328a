from types import SimpleNamespace

import httpx
import pytest
import respx

from tourwatch.services.errors import ProviderError
from tourwatch.services.provider_client import ProviderClient, search_params

BASE_URL = "https://aggregator.test/api"

QUERY = SimpleNamespace(
    destinations=["Turkey"],
    departure_city="Moscow",
    start_date=None,
    end_date=None,
    flexible_month="2026-08",
    duration_nights=7,
    adults=2,
    children=1,
    children_ages=[6],
    budget=60000,
    budget_type="per_person",
    currency="RUB",
)

TOURS = {
    "tours": [
        {
            "provider": "leveltravel", "id": "101", "price": 152000, "currency": "RUB",
            "hotel": "Rixos Premium", "hotelStars": 5, "beachLine": 1, "mealType": "all_inclusive",
            "rating": 4.7, "startDate": "2026-08-10", "endDate": "2026-08-17", "nights": 7,
            "link": "https://level.travel/tours/101", "availability": "available",
        },
        {"provider": "leveltravel", "id": "101", "price": 149000, "hotel": "Rixos Premium"},
        {"provider": "travelata", "id": "77", "price": "98000.50", "hotel": "Palm Garden"},
        {"provider": "sletat", "price": 1000},
    ]
}


def make_client(http_client, **kwargs):
    return ProviderClient(
        base_url=BASE_URL, api_key="secret", client=http_client, use_cache=False, retry_backoff=0, **kwargs
    )


def test_search_params():
    params = search_params(QUERY)
    assert params["destinations"] == "Turkey"
    assert params["budgetMax"] == 180000
    assert params["childrenAges"] == "6"
    assert params["month"] == "2026-08"
    assert params["nights"] == 7


@pytest.mark.asyncio
async def test_search_parses_and_dedupes():
    async with respx.mock(assert_all_called=True) as router:
        route = router.get(host="aggregator.test", path="/api/tours/search").mock(
            return_value=httpx.Response(200, json=TOURS)
        )
        async with httpx.AsyncClient() as session:
            candidates = await make_client(session).search(QUERY)

    by_id = {c.candidate_id: c for c in candidates}
    assert set(by_id) == {"leveltravel:101", "travelata:77"}
    # Cheapest duplicate wins
    assert by_id["leveltravel:101"].price == 149000
    assert by_id["travelata:77"].price == 98000.5

    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer secret"
    assert request.url.params["destinations"] == "Turkey"


@pytest.mark.asyncio
async def test_ranking_attributes_are_mapped():
    payload = {"tours": [TOURS["tours"][0]]}
    async with respx.mock() as router:
        router.get(host="aggregator.test", path="/api/tours/search").mock(
            return_value=httpx.Response(200, json=payload)
        )
        async with httpx.AsyncClient() as session:
            [candidate] = await make_client(session).search(QUERY)

    assert candidate.attributes["stars"] == 5
    assert candidate.attributes["beach_line"] == 1
    assert candidate.attributes["meal_type"] == "all_inclusive"
    assert candidate.attributes["review_rating"] == 4.7
    assert candidate.start_date.isoformat() == "2026-08-10"
    assert candidate.is_available


@pytest.mark.asyncio
async def test_rate_limit_is_retried():
    async with respx.mock() as router:
        route = router.get(host="aggregator.test", path="/api/tours/search")
        route.side_effect = [httpx.Response(429), httpx.Response(200, json={"tours": []})]
        async with httpx.AsyncClient() as session:
            assert await make_client(session).search(QUERY) == []
        assert route.call_count == 2


@pytest.mark.asyncio
async def test_server_error_raises_provider_error():
    async with respx.mock() as router:
        router.get(host="aggregator.test", path="/api/tours/search").mock(return_value=httpx.Response(502))
        async with httpx.AsyncClient() as session:
            with pytest.raises(ProviderError):
                await make_client(session).search(QUERY)


@pytest.mark.asyncio
async def test_transport_errors_exhaust_retries():
    async with respx.mock() as router:
        route = router.get(host="aggregator.test", path="/api/tours/search").mock(
            side_effect=httpx.ConnectError("connection refused")
        )
        async with httpx.AsyncClient() as session:
            with pytest.raises(ProviderError):
                await make_client(session).search(QUERY)
        assert route.call_count == 3


@pytest.mark.asyncio
async def test_mock_mode_is_deterministic():
    client = ProviderClient(base_url="", use_cache=False)

    first = await client.search(QUERY)
    second = await client.search(QUERY)

    assert first
    assert [(c.candidate_id, c.price) for c in first] == [(c.candidate_id, c.price) for c in second]


class MemoryCache:
    def __init__(self):
        self.data = {}

    async def get_offers(self, params):
        return self.data.get(str(sorted(params.items())))

    async def set_offers(self, params, data):
        self.data[str(sorted(params.items()))] = data


@pytest.mark.asyncio
async def test_cached_results_skip_the_aggregator():
    cache = MemoryCache()
    async with respx.mock() as router:
        route = router.get(host="aggregator.test", path="/api/tours/search").mock(
            return_value=httpx.Response(200, json=TOURS)
        )
        async with httpx.AsyncClient() as session:
            client = ProviderClient(base_url=BASE_URL, client=session, cache=cache, use_cache=True)
            first = await client.search(QUERY)
            second = await client.search(QUERY)
        assert route.call_count == 1

    assert {c.candidate_id for c in first} == {c.candidate_id for c in second}
