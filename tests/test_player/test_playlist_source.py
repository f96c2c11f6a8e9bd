"""Tests for the player's playlist fetcher."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from mirror.schemas.playlist import PlaylistItem
from player.playlist_source import PlaylistSource, resolve_item_url

BASE = "http://kiosk.local:8000"


def _payload(*names: str) -> dict[str, object]:
    return {
        "items": [
            {"title": n, "localName": n, "url": f"/api/video?name={n}", "size": 1}
            for n in names
        ]
    }


class TestResolveItemUrl:
    def test_relative_url_joined_to_base(self) -> None:
        item = PlaylistItem(local_name="a.mp4", url="/api/video?name=a.mp4")
        assert resolve_item_url(item, BASE + "/") == f"{BASE}/api/video?name=a.mp4"

    def test_absolute_url_kept(self) -> None:
        item = PlaylistItem(local_name="a.mp4", url="https://cdn.test/a.mp4")
        assert resolve_item_url(item, BASE + "/") == "https://cdn.test/a.mp4"

    def test_local_name_fallback_is_encoded(self) -> None:
        item = PlaylistItem(local_name="a b.mp4")
        assert resolve_item_url(item, BASE + "/") == f"{BASE}/api/video?name=a%20b.mp4"

    def test_base_path_prefix_is_preserved(self) -> None:
        item = PlaylistItem(local_name="a.mp4", url="/api/video?name=a.mp4")
        assert (
            resolve_item_url(item, "http://host/kiosk/")
            == "http://host/kiosk/api/video?name=a.mp4"
        )


class TestRefresh:
    @pytest.mark.asyncio
    async def test_fetches_items_and_notifies(self) -> None:
        received: list[list[PlaylistItem]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == f"{BASE}/api/playlist"
            return httpx.Response(200, json=_payload("a", "b"))

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            source = PlaylistSource(client, BASE, on_update=received.append)
            items = await source.refresh()

        assert [i.local_name for i in items] == ["a", "b"]
        assert [[i.local_name for i in batch] for batch in received] == [["a", "b"]]

    @pytest.mark.asyncio
    async def test_failure_keeps_last_good_playlist(self) -> None:
        responses = [
            httpx.Response(200, json=_payload("a")),
            httpx.Response(503),
            httpx.Response(200, json={"items": [{"title": "no local name"}]}),
        ]

        async with httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: responses.pop(0))
        ) as client:
            received: list[list[PlaylistItem]] = []
            source = PlaylistSource(client, BASE, on_update=received.append)
            await source.refresh()
            after_error = await source.refresh()
            after_invalid = await source.refresh()

        assert [i.local_name for i in after_error] == ["a"]
        assert [i.local_name for i in after_invalid] == ["a"]
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_connection_error_keeps_last_good_playlist(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            source = PlaylistSource(client, BASE)
            assert await source.refresh() == []

    @pytest.mark.asyncio
    async def test_new_refresh_supersedes_in_flight_fetch(self) -> None:
        release = asyncio.Event()
        first_started = asyncio.Event()
        calls = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                first_started.set()
                await release.wait()
                return httpx.Response(200, json=_payload("stale"))
            return httpx.Response(200, json=_payload("fresh"))

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            received: list[list[PlaylistItem]] = []
            source = PlaylistSource(client, BASE, on_update=received.append)
            first = asyncio.create_task(source.refresh())
            await first_started.wait()

            second = await source.refresh()
            release.set()
            first_result = await first

        assert [i.local_name for i in second] == ["fresh"]
        assert "stale" not in [i.local_name for i in first_result]
        assert [[i.local_name for i in batch] for batch in received] == [["fresh"]]

    @pytest.mark.asyncio
    async def test_close_aborts_in_flight_fetch(self) -> None:
        started = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            started.set()
            await asyncio.Event().wait()
            return httpx.Response(200, json=_payload("never"))

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            source = PlaylistSource(client, BASE)
            pending = asyncio.create_task(source.refresh())
            await started.wait()
            await source.close()
            result = await pending
            after_close = await source.refresh()

        assert result == []
        assert after_close == []
