import httpx
import pytest
import respx

from archiveharvest.pipeline.fetcher import CachedFetcher, FetchError
from archiveharvest.pipeline.ratelimit import RateLimiter


async def _no_sleep(_s: float) -> None:
    return None


def _fetcher(tmp_path, **kwargs) -> CachedFetcher:
    return CachedFetcher(
        cache_dir=tmp_path / "cache",
        limiter=RateLimiter(0.0, sleep_fn=_no_sleep),
        backoff_s=0.0,
        sleep_fn=_no_sleep,
        **kwargs,
    )


@pytest.mark.asyncio
@respx.mock
async def test_fetch_retries_on_429(tmp_path):
    url = "https://archives.example.org/items/1"
    route = respx.get(url).mock(
        side_effect=[
            httpx.Response(429, headers={"Retry-After": "0"}, content=b"Too Many Requests"),
            httpx.Response(200, content=b"<html>ok</html>"),
        ]
    )

    async with _fetcher(tmp_path, max_retries=2) as fetcher:
        body = await fetcher.fetch(url)

    assert body == b"<html>ok</html>"
    assert route.call_count == 2


@pytest.mark.asyncio
@respx.mock
async def test_fetch_writes_cache_and_sends_user_agent(tmp_path):
    url = "https://archives.example.org/items/2"
    route = respx.get(url).mock(return_value=httpx.Response(200, content=b"<p>cached</p>"))

    async with _fetcher(tmp_path, user_agent="testbot/1.0") as fetcher:
        await fetcher.fetch(url)
        cache_path = fetcher.cache_path_for(url)

    assert cache_path.read_bytes() == b"<p>cached</p>"
    assert [p.name for p in cache_path.parent.iterdir()] == [cache_path.name]
    assert route.calls.last.request.headers["User-Agent"] == "testbot/1.0"


@pytest.mark.asyncio
@respx.mock
async def test_cache_hit_skips_network(tmp_path):
    url = "https://archives.example.org/items/3"
    async with _fetcher(tmp_path) as fetcher:
        path = fetcher.cache_path_for(url)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"from disk")

        # No route is registered, so any request would fail the test.
        body = await fetcher.fetch(url)

    assert body == b"from disk"


@pytest.mark.asyncio
@respx.mock
async def test_fetch_bypasses_cache_when_asked(tmp_path):
    url = "https://archives.example.org/robots.txt"
    route = respx.get(url).mock(return_value=httpx.Response(200, content=b"fresh"))

    async with _fetcher(tmp_path) as fetcher:
        path = fetcher.cache_path_for(url)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"stale")
        body = await fetcher.fetch(url, use_cache=False)

    assert body == b"fresh"
    assert route.call_count == 1
    assert path.read_bytes() == b"stale"


@pytest.mark.asyncio
@respx.mock
async def test_client_error_is_not_retried(tmp_path):
    url = "https://archives.example.org/items/missing"
    route = respx.get(url).mock(return_value=httpx.Response(404))

    async with _fetcher(tmp_path, max_retries=3) as fetcher:
        with pytest.raises(FetchError) as excinfo:
            await fetcher.fetch(url)

    assert excinfo.value.status_code == 404
    assert excinfo.value.url == url
    assert route.call_count == 1
    assert not fetcher.cache_path_for(url).exists()


@pytest.mark.asyncio
@respx.mock
async def test_server_error_after_retries_exhausted(tmp_path):
    url = "https://archives.example.org/items/flaky"
    route = respx.get(url).mock(return_value=httpx.Response(503))

    async with _fetcher(tmp_path, max_retries=1) as fetcher:
        with pytest.raises(FetchError) as excinfo:
            await fetcher.fetch(url)

    assert excinfo.value.status_code == 503
    assert route.call_count == 2


@pytest.mark.asyncio
@respx.mock
async def test_transport_error_has_no_status_code(tmp_path):
    url = "https://archives.example.org/items/down"
    route = respx.get(url).mock(side_effect=httpx.ConnectError("connection refused"))

    async with _fetcher(tmp_path, max_retries=1) as fetcher:
        with pytest.raises(FetchError) as excinfo:
            await fetcher.fetch(url)

    assert excinfo.value.status_code is None
    assert route.call_count == 2


def test_cache_key_is_url_digest(tmp_path):
    fetcher = _fetcher(tmp_path)
    a = fetcher.cache_path_for("https://archives.example.org/a")
    b = fetcher.cache_path_for("https://archives.example.org/b")

    assert a != b
    assert a.parent == tmp_path / "cache"
    assert len(a.stem) == 64
