"""
Tests for the recommendation orchestrator (RecommendationService).

Covers the fallback ladder, ranking success/failure merging, exclusion and
deduplication guarantees, and the catalog-level failure modes.
"""
import asyncio

import httpx
import pytest
from pymongo.errors import ServerSelectionTimeoutError

from conftest import (
    ExplodingRanker,
    StubRanker,
    build_service,
    order_doc,
    popularity_order,
    product_doc,
)
from ecoreco.domain.services.ranker_svc import OllamaRanker


def ids(products):
    return [p.id for p in products]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def catalog_ab():
    """10 products over categories A and B; seed `s` has 3 other A products."""
    docs = [
        product_doc("s", "A"),
        product_doc("a1", "A"),
        product_doc("a2", "A"),
        product_doc("a3", "A"),
    ] + [product_doc(f"b{i}", "B") for i in range(1, 7)]
    history = popularity_order(("s", 9), ("b2", 5), ("b1", 3), ("a1", 1))
    return docs, [history]


@pytest.fixture
def catalog_c():
    """Order o1 bought c1 and c2 (category C); c3..c7 are the other C products."""
    docs = [product_doc(f"c{i}", "C") for i in range(1, 8)] + [
        product_doc("d1", "D"),
        product_doc("d2", "D"),
    ]
    orders = [
        order_doc("o1", [("c1", 1, "C"), ("c2", 2, "C")]),
        popularity_order(("d1", 7), ("c1", 4), ("d2", 2)),
    ]
    return docs, orders


# =============================================================================
# SCENARIOS
# =============================================================================

class TestScenarios:

    @pytest.mark.asyncio
    async def test_product_seed_without_ranker_pads_with_popular(self, catalog_ab):
        """Scenario A: the 3 category matches, then one popularity pad (seed excluded)."""
        docs, orders = catalog_ab
        ranker = ExplodingRanker()
        svc = build_service(docs, orders, ranker, use_llm=False)

        result = await svc.get_recommendations(product_id="s", limit=4)

        assert ids(result) == ["a1", "a2", "a3", "b2"]
        assert ranker.calls == []

    @pytest.mark.asyncio
    async def test_order_seed_uses_ranker_order(self, catalog_c):
        """Scenario B: ranker picks 4 of the 5 candidates; result follows its order."""
        docs, orders = catalog_c
        ranker = StubRanker(available=True, ids=["c6", "c4", "c3", "c7"])
        svc = build_service(docs, orders, ranker)

        result = await svc.get_recommendations(order_id="o1", limit=4)

        assert ids(result) == ["c6", "c4", "c3", "c7"]
        call = ranker.rank_calls[0]
        assert call["context"].id == "o1"
        assert ids(call["candidates"]) == ["c3", "c4", "c5", "c6", "c7"]
        assert call["categories"] == ["C"]

    @pytest.mark.asyncio
    async def test_slow_probe_skips_ranking(self, catalog_c):
        """Scenario C: a probe slower than its timeout reports unavailable; no generate call."""
        docs, orders = catalog_c
        seen = []

        async def handler(request: httpx.Request):
            seen.append(request.method)
            if request.method == "GET":
                await asyncio.sleep(2)
            return httpx.Response(200, json={"response": "Recommended product IDs: c3, c4, c5, c6"})

        ranker = OllamaRanker(
            "http://ollama.test/api/generate", "llama3.2:1b",
            probe_timeout_s=0.2,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        svc = build_service(docs, orders, ranker)
        baseline = build_service(docs, orders, use_llm=False)

        loop = asyncio.get_running_loop()
        t0 = loop.time()
        result = await svc.get_recommendations(order_id="o1", limit=4)
        elapsed = loop.time() - t0

        assert elapsed < 1.5
        assert "POST" not in seen
        assert ids(result) == ids(await baseline.get_recommendations(order_id="o1", limit=4))
        await ranker.aclose()

    @pytest.mark.asyncio
    async def test_empty_catalog_returns_empty_everywhere(self):
        """Scenario D."""
        svc = build_service([], [], StubRanker())

        assert await svc.get_recommendations() == []
        assert await svc.get_recommendations(product_id="x") == []
        assert await svc.get_recommendations(order_id="o") == []
        assert await svc.get_popular_products() == []


# =============================================================================
# FALLBACK LADDER
# =============================================================================

class TestFallbacks:

    @pytest.mark.asyncio
    async def test_no_seed_returns_popular(self, catalog_ab):
        docs, orders = catalog_ab
        svc = build_service(docs, orders, ExplodingRanker(), use_llm=False)

        result = await svc.get_recommendations(limit=3)

        assert ids(result) == ["s", "b2", "b1"]

    @pytest.mark.asyncio
    async def test_unknown_product_returns_fallback_without_seed(self, catalog_ab):
        docs, orders = catalog_ab
        svc = build_service(docs, orders, StubRanker())

        result = await svc.get_recommendations(product_id="nope", limit=2)

        assert ids(result) == ["s", "b2"]

    @pytest.mark.asyncio
    async def test_categoryless_seed_returns_fallback(self, catalog_ab):
        docs, orders = catalog_ab
        docs = docs + [product_doc("plain", None)]
        ranker = StubRanker()
        svc = build_service(docs, orders, ranker)

        result = await svc.get_recommendations(product_id="plain", limit=4)

        assert ids(result) == ["s", "b2", "b1", "a1"]
        assert ranker.rank_calls == []

    @pytest.mark.asyncio
    async def test_missing_order_returns_fallback(self, catalog_c):
        docs, orders = catalog_c
        svc = build_service(docs, orders, StubRanker())

        result = await svc.get_recommendations(order_id="missing", limit=2)

        assert ids(result) == ["d1", "c1"]

    @pytest.mark.asyncio
    async def test_empty_order_returns_fallback(self, catalog_c):
        docs, orders = catalog_c
        orders = orders + [{"_id": "empty", "user": "u1", "orderItems": []}]
        svc = build_service(docs, orders, StubRanker())

        result = await svc.get_recommendations(order_id="empty", limit=2)

        assert ids(result) == ["d1", "c1"]

    @pytest.mark.asyncio
    async def test_order_without_candidates_pads_with_popular_not_bought(self):
        docs = [product_doc("x1", "X"), product_doc("p1", "P"), product_doc("p2", "P")]
        orders = [
            order_doc("o", [("x1", 1, "X")]),
            popularity_order(("x1", 10), ("p2", 3)),
        ]
        svc = build_service(docs, orders, StubRanker())

        result = await svc.get_recommendations(order_id="o", limit=3)

        assert ids(result) == ["p2", "p1"]

    @pytest.mark.asyncio
    async def test_ranker_unavailable_uses_candidates(self, catalog_c):
        docs, orders = catalog_c
        ranker = StubRanker(available=False, ids=["c7", "c6"])
        svc = build_service(docs, orders, ranker)

        result = await svc.get_recommendations(order_id="o1", limit=4)

        assert ids(result) == ["c3", "c4", "c5", "c6"]
        assert ranker.probe_calls == 1
        assert ranker.rank_calls == []

    @pytest.mark.asyncio
    async def test_low_confidence_ranking_equals_fallback_path(self, catalog_c):
        """One valid id out of the model's answer is not trusted: deterministic result."""
        docs, orders = catalog_c

        def handler(request: httpx.Request):
            if request.method == "GET":
                return httpx.Response(200, text="Ollama is running")
            return httpx.Response(200, json={"response": "Recommended product IDs: c7, 991, 992"})

        ranker = OllamaRanker(
            "http://ollama.test/api/generate", "llama3.2:1b",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        svc = build_service(docs, orders, ranker)
        baseline = build_service(docs, orders, use_llm=False)

        result = await svc.get_recommendations(order_id="o1", limit=4)

        assert ids(result) == ids(await baseline.get_recommendations(order_id="o1", limit=4))
        assert ids(result) == ["c3", "c4", "c5", "c6"]
        await ranker.aclose()

    @pytest.mark.asyncio
    async def test_short_ranking_is_padded_with_pool(self, catalog_c):
        docs, orders = catalog_c
        svc = build_service(docs, orders, StubRanker(ids=["c7", "c5"]))

        result = await svc.get_recommendations(order_id="o1", limit=4)

        assert ids(result) == ["c7", "c5", "c3", "c4"]

    @pytest.mark.asyncio
    async def test_product_ranking_success(self, catalog_ab):
        docs, orders = catalog_ab
        ranker = StubRanker(ids=["b2", "a3", "a1", "b1"])
        svc = build_service(docs, orders, ranker)

        result = await svc.get_recommendations(product_id="s", limit=4)

        assert ids(result) == ["b2", "a3", "a1", "b1"]
        assert ranker.rank_calls[0]["context"].id == "s"

    @pytest.mark.asyncio
    async def test_product_path_skips_ranker_when_pool_too_small(self):
        docs = [product_doc("s", "A"), product_doc("a1", "A")]
        ranker = StubRanker(ids=["a1"])
        svc = build_service(docs, [], ranker)

        result = await svc.get_recommendations(product_id="s", limit=4)

        assert ids(result) == ["a1"]
        assert ranker.probe_calls == 0

    @pytest.mark.asyncio
    async def test_sustainability_window_narrows_category_matches(self):
        docs = [
            product_doc("s", "A", score=80),
            product_doc("near", "A", score=70),
            product_doc("far", "A", score=20),
            product_doc("unknown", "A"),
        ]
        svc = build_service(docs, [], use_llm=False, sustainability_window=20)

        result = await svc.get_recommendations(product_id="s", limit=2)

        assert ids(result) == ["near", "unknown"]


# =============================================================================
# GUARANTEES
# =============================================================================

class TestGuarantees:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [1, 2, 4, 7, 20])
    async def test_bounded_unique_and_seed_free(self, catalog_ab, catalog_c, limit):
        docs = catalog_ab[0] + catalog_c[0]
        orders = catalog_ab[1] + catalog_c[1]
        svc = build_service(docs, orders, StubRanker(ids=["c6", "c6", "a1", "s", "b3"]))

        for doc in docs:
            result = await svc.get_recommendations(product_id=doc["_id"], limit=limit)
            assert len(result) <= limit
            assert len(set(ids(result))) == len(result)
            assert doc["_id"] not in ids(result)

        result = await svc.get_recommendations(order_id="o1", limit=limit)
        assert len(result) <= limit
        assert len(set(ids(result))) == len(result)
        assert not {"c1", "c2"} & set(ids(result))

    @pytest.mark.asyncio
    async def test_disabled_llm_never_touches_ranker(self, catalog_c):
        ranker = ExplodingRanker()
        svc = build_service(*catalog_c, ranker, use_llm=False)

        await svc.get_recommendations(order_id="o1")
        await svc.get_recommendations(product_id="c3")
        assert await svc.prewarm_model() is False
        assert svc.schedule_warmup() is None
        assert ranker.calls == []

    @pytest.mark.asyncio
    async def test_unavailable_ranker_is_idempotent(self, catalog_ab):
        svc = build_service(*catalog_ab, StubRanker(available=False))

        first = await svc.get_recommendations(product_id="s", limit=4)
        second = await svc.get_recommendations(product_id="s", limit=4)

        assert ids(first) == ids(second)

    @pytest.mark.asyncio
    async def test_non_positive_limit_is_clamped(self, catalog_ab):
        svc = build_service(*catalog_ab, use_llm=False)

        assert len(await svc.get_recommendations(limit=0)) == 1


# =============================================================================
# STORAGE FAILURES
# =============================================================================

class TestStorageFailures:

    @pytest.mark.asyncio
    async def test_catalog_down_returns_empty_list(self, catalog_ab):
        svc = build_service(*catalog_ab, StubRanker())
        svc.catalog.product_repo.error = ServerSelectionTimeoutError("no servers")

        assert await svc.get_recommendations(product_id="s") == []
        assert await svc.get_popular_products() == []

    @pytest.mark.asyncio
    async def test_order_lookup_failure_returns_fallback(self, catalog_c):
        svc = build_service(*catalog_c, StubRanker())
        await svc.catalog.get_products_with_counts()  # warm snapshot
        svc.catalog.order_repo.error = ServerSelectionTimeoutError("no servers")

        result = await svc.get_recommendations(order_id="o1", limit=2)

        assert ids(result) == ["d1", "c1"]

    @pytest.mark.asyncio
    async def test_unreadable_product_does_not_poison_catalog(self):
        docs = [product_doc("a1", "A"), product_doc("a2", "A"), product_doc("bad", "A", price="N/A")]
        svc = build_service(docs, [], ExplodingRanker(), use_llm=False)

        assert ids(await svc.get_recommendations(product_id="a1", limit=2)) == ["a2"]
        assert ids(await svc.get_popular_products(2)) == ["a1", "a2"]

    @pytest.mark.asyncio
    async def test_unexpected_error_serves_popular(self, catalog_c, monkeypatch):
        svc = build_service(*catalog_c, StubRanker())

        async def boom(*args, **kwargs):
            raise RuntimeError("unexpected")

        monkeypatch.setattr(svc, "_for_order", boom)

        result = await svc.get_recommendations(order_id="o1", limit=2)

        assert ids(result) == ["d1", "c1"]


# =============================================================================
# WARMUP
# =============================================================================

class TestWarmup:

    @pytest.mark.asyncio
    async def test_prewarm_delegates_to_ranker(self):
        svc = build_service([], [], StubRanker(warm=True))
        assert await svc.prewarm_model() is True

    @pytest.mark.asyncio
    async def test_scheduled_warmup_runs_in_background(self):
        svc = build_service([], [], StubRanker(warm=False))

        task = svc.schedule_warmup()

        assert task.get_name() == "ollama-warmup"
        assert await task is False

    @pytest.mark.asyncio
    async def test_background_failure_does_not_propagate(self):
        ranker = StubRanker()

        async def failing_warmup():
            raise RuntimeError("model crashed")

        ranker.warmup = failing_warmup
        svc = build_service([], [], ranker)

        task = svc.schedule_warmup()
        await asyncio.gather(task, return_exceptions=True)
        await asyncio.sleep(0)  # let the done callback run

        assert svc._background == set()

    @pytest.mark.asyncio
    async def test_aclose_cancels_pending_warmup(self):
        ranker = StubRanker()

        async def slow_warmup():
            await asyncio.sleep(10)
            return True

        ranker.warmup = slow_warmup
        svc = build_service([], [], ranker)
        task = svc.schedule_warmup()
        await asyncio.sleep(0)

        await svc.aclose()

        assert task.cancelled()
        assert ranker.closed
