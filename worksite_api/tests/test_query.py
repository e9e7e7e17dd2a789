"""Tests for cached, instrumented select chains."""

import asyncio

import pytest

from src.db.instrumentation import Outcome, SpanStatus
from src.db.metrics import CACHE_HIT, CACHE_MISS, QUERY_ERROR, QUERY_TIME


@pytest.fixture
def seeded(backend):
    backend.rows["profiles"] = [{"id": 1, "name": "Kim"}, {"id": 2, "name": "Lee"}]
    return backend


class TestSelectCaching:
    @pytest.mark.asyncio
    async def test_second_identical_read_is_served_from_cache(self, client, seeded) -> None:
        first = await client.from_("profiles").select("*").execute()
        second = await client.from_("profiles").select("*").execute()

        assert second is first
        assert seeded.count("profiles", "select") == 1
        assert client.metrics.count(CACHE_MISS) == 1
        assert client.metrics.count(CACHE_HIT) == 1
        assert client.get_cache_stats().entries == ["profiles:select:*"]

    @pytest.mark.asyncio
    async def test_different_columns_use_different_slots(self, client, seeded) -> None:
        await client.from_("profiles").select("*").execute()
        await client.from_("profiles").select("id").execute()

        assert seeded.count("profiles", "select") == 2
        assert sorted(client.get_cache_stats().entries) == ["profiles:select:*", "profiles:select:id"]

    @pytest.mark.asyncio
    async def test_filters_are_not_part_of_the_key(self, client, seeded) -> None:
        first = await client.from_("profiles").select("*").eq("id", 1).execute()
        second = await client.from_("profiles").select("*").eq("id", 2).execute()

        # Both reads share the profiles:select:* slot
        assert seeded.count("profiles", "select") == 1
        assert second.data == first.data == [{"id": 1, "name": "Kim"}]

    @pytest.mark.asyncio
    async def test_read_after_ttl_fetches_again(self, client, seeded, clock) -> None:
        await client.from_("profiles").select("*").execute()
        clock.advance(client.settings.DEFAULT_CACHE_TTL_SECONDS + 1)
        await client.from_("profiles").select("*").execute()

        assert seeded.count("profiles", "select") == 2

    @pytest.mark.asyncio
    async def test_awaiting_the_query_directly(self, client, seeded) -> None:
        response = await client.from_("profiles").select("id", "name").order("id")

        assert [r["id"] for r in response.data] == [1, 2]
        assert client.get_cache_stats().entries == ["profiles:select:id,name"]

    @pytest.mark.asyncio
    async def test_chain_is_forwarded_to_the_builder(self, client, seeded) -> None:
        await client.from_("profiles").select("*").gte("id", 1).in_("id", [1, 2]).order("id", desc=True).single()

        builder = seeded.executed[-1]
        assert [name for name, _, _ in builder.calls] == ["gte", "in_", "order", "single"]
        assert builder.calls[2] == ("order", ("id",), {"desc": True})

    @pytest.mark.asyncio
    async def test_none_data_is_not_cached(self, client, backend) -> None:
        response = await client.from_("profiles").select("*").eq("id", 99).single()

        assert response.data is None
        assert client.get_cache_stats().size == 0


class TestSelectResolution:
    @pytest.mark.asyncio
    async def test_same_instance_resolved_twice_runs_once(self, client, seeded) -> None:
        query = client.from_("profiles").select("*")

        first = await query.execute()
        second = await query

        assert first is second
        assert seeded.count("profiles", "select") == 1
        assert client.metrics.count(CACHE_MISS) == 1
        assert client.metrics.count(CACHE_HIT) == 0

    @pytest.mark.asyncio
    async def test_concurrent_resolution_of_one_instance_shares_the_call(self, client, seeded) -> None:
        seeded.gate = asyncio.Event()
        query = client.from_("profiles").select("*")

        pending = asyncio.gather(query.execute(), query.execute(), query)
        await asyncio.sleep(0)
        seeded.gate.set()
        results = await pending

        assert results[0] is results[1] is results[2]
        assert seeded.count("profiles", "select") == 1
        assert client.metrics.count(QUERY_TIME) == 1

    @pytest.mark.asyncio
    async def test_cancelling_one_waiter_leaves_the_others_running(self, client, seeded) -> None:
        seeded.gate = asyncio.Event()
        query = client.from_("profiles").select("*")

        first = asyncio.ensure_future(query.execute())
        second = asyncio.ensure_future(query.execute())
        for _ in range(3):
            await asyncio.sleep(0)
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first

        seeded.gate.set()
        response = await second

        assert response.data == [{"id": 1, "name": "Kim"}, {"id": 2, "name": "Lee"}]
        assert (await query).data is response.data
        assert seeded.count("profiles", "select") == 1

    @pytest.mark.asyncio
    async def test_cancelling_the_last_waiter_cancels_the_call(self, client, seeded, sink) -> None:
        seeded.gate = asyncio.Event()
        query = client.from_("profiles").select("*")

        only = asyncio.ensure_future(query.execute())
        for _ in range(3):
            await asyncio.sleep(0)
        only.cancel()
        with pytest.raises(asyncio.CancelledError):
            await only
        for _ in range(3):
            await asyncio.sleep(0)

        assert sink.spans[-1].status is SpanStatus.CANCELLED
        assert sink.metrics[-1].outcome is Outcome.CANCELLED
        assert client.metrics.count(QUERY_ERROR) == 0

        seeded.gate.set()
        response = await query
        assert len(response.data) == 2
        assert seeded.count("profiles", "select") == 2


class TestSlowSelect:
    @pytest.mark.asyncio
    async def test_slow_read_warns_once_and_returns_the_rows(self, client, seeded, sink) -> None:
        seeded.delay = 1.5

        response = await client.from_("profiles").select("*").execute()

        assert response.data == [{"id": 1, "name": "Kim"}, {"id": 2, "name": "Lee"}]
        warnings = sink.warnings()
        assert len(warnings) == 1
        _, level, context = warnings[0]
        assert level == "warning"
        assert context["table"] == "profiles"
        assert context["operation"] == "select"
        assert context["duration"] == pytest.approx(1500.0)


class TestSelectErrors:
    @pytest.mark.asyncio
    async def test_error_propagates_unchanged(self, client, backend) -> None:
        boom = RuntimeError("boom")
        backend.errors[("profiles", "select")] = boom

        with pytest.raises(RuntimeError) as exc_info:
            await client.from_("profiles").select("*").execute()

        assert exc_info.value is boom
        assert str(exc_info.value) == "boom"
        assert exc_info.value.call_context["table"] == "profiles"
        assert client.metrics.count(QUERY_ERROR) == 1
        assert client.get_cache_stats().size == 0

    @pytest.mark.asyncio
    async def test_failed_instance_rethrows_on_repeat(self, client, backend) -> None:
        backend.errors[("profiles", "select")] = RuntimeError("boom")
        query = client.from_("profiles").select("*")

        for _ in range(2):
            with pytest.raises(RuntimeError, match="^boom$"):
                await query.execute()

        assert backend.count("profiles", "select") == 1
        assert client.metrics.count(QUERY_ERROR) == 1


class TestSelectWithCacheDisabled:
    @pytest.mark.asyncio
    async def test_every_read_reaches_upstream(self, make_client, seeded) -> None:
        client = make_client(ENABLE_QUERY_CACHE=False)

        await client.from_("profiles").select("*").execute()
        await client.from_("profiles").select("*").execute()

        assert seeded.count("profiles", "select") == 2
        assert client.get_cache_stats().size == 0
        assert client.metrics.count(CACHE_MISS) == 0
        assert client.metrics.count(QUERY_TIME) == 2
