"""HTTP benchmark for the feed API.

Creates a few posts, then times list / paginate / detail requests and
reports the average SQL query count and cache hit count per endpoint,
read from the diagnostic response headers.
"""
import asyncio
import argparse
import time
import statistics
import httpx

BASE_URL = "http://localhost:8000"


async def benchmark_endpoint(client: httpx.AsyncClient, name: str, path: str, iterations: int = 50):
    times = []
    query_counts = []
    cache_hits = []
    errors = 0

    # Warmup (also fills the cache)
    for _ in range(3):
        try:
            await client.get(f"{BASE_URL}{path}")
        except httpx.HTTPError:
            pass

    for _ in range(iterations):
        try:
            start = time.perf_counter()
            resp = await client.get(f"{BASE_URL}{path}")
            elapsed = (time.perf_counter() - start) * 1000
        except httpx.HTTPError:
            errors += 1
            continue

        if resp.status_code != 200:
            errors += 1
            continue
        times.append(elapsed)
        if "X-Query-Count" in resp.headers:
            query_counts.append(int(resp.headers["X-Query-Count"]))
        if "X-Cache-Hits" in resp.headers:
            cache_hits.append(int(resp.headers["X-Cache-Hits"]))

    if not times:
        return {"name": name, "error": f"All {iterations} requests failed"}

    ordered = sorted(times)
    return {
        "name": name,
        "avg_ms": round(statistics.mean(times), 2),
        "p50_ms": round(ordered[len(ordered) // 2], 2),
        "p95_ms": round(ordered[int(len(ordered) * 0.95)], 2),
        "p99_ms": round(ordered[int(len(ordered) * 0.99)], 2),
        "queries": round(statistics.mean(query_counts), 1) if query_counts else "N/A",
        "hits": round(statistics.mean(cache_hits), 1) if cache_hits else "N/A",
        "errors": errors,
    }


async def _prepare(client: httpx.AsyncClient) -> list[tuple[str, str]]:
    """Make sure there is something to read and build the endpoint list."""
    post = (await client.post(f"{BASE_URL}/ui/v1/posts", json={"body": "benchmark"})).json()
    await client.post(f"{BASE_URL}/ui/v1/posts/{post['id']}/comment", json={"body": "bench"})
    first_page = (await client.get(f"{BASE_URL}/ui/v1/posts", params={"limit": 10})).json()
    endpoints = [
        ("GET /ui/v1/posts", "/ui/v1/posts"),
        ("GET /ui/v1/posts?limit=100", "/ui/v1/posts?limit=100"),
        ("GET /ui/v1/posts/{id}", f"/ui/v1/posts/{post['id']}"),
    ]
    if first_page.get("next_cursor"):
        endpoints.append(
            ("GET /ui/v1/posts?cursor=...", f"/ui/v1/posts?cursor={first_page['next_cursor']}")
        )
    return endpoints


async def run_benchmark(iterations: int = 50):
    print("=" * 88)
    print(f"Feed API Benchmark — {iterations} iterations per endpoint")
    print(f"Target: {BASE_URL}")
    print("=" * 88)

    async with httpx.AsyncClient() as client:
        try:
            resp = await client.get(f"{BASE_URL}/api/v1/readiness")
            print(f"Readiness: {resp.status_code} {resp.json()}")
            if resp.status_code != 200:
                return
        except httpx.HTTPError as e:
            print(f"ERROR: Cannot connect to {BASE_URL} — {e}")
            return

        endpoints = await _prepare(client)

        print()
        print(f"{'Endpoint':<40} {'Avg':>8} {'P50':>8} {'P95':>8} {'P99':>8} {'Queries':>8} {'Hits':>6} {'Err':>4}")
        print("-" * 88)

        for name, path in endpoints:
            result = await benchmark_endpoint(client, name, path, iterations)
            if "error" in result:
                print(f"{result['name']:<40} {'ERROR':>8}")
                continue
            print(
                f"{result['name']:<40} "
                f"{result['avg_ms']:>7.1f}ms "
                f"{result['p50_ms']:>7.1f}ms "
                f"{result['p95_ms']:>7.1f}ms "
                f"{result['p99_ms']:>7.1f}ms "
                f"{str(result['queries']):>8} "
                f"{str(result['hits']):>6} "
                f"{result['errors']:>4}"
            )

        print("-" * 88)
        print("\nBenchmark complete.")


def main():
    global BASE_URL
    parser = argparse.ArgumentParser(description="Benchmark the feed API")
    parser.add_argument("-n", "--iterations", type=int, default=50, help="Iterations per endpoint")
    parser.add_argument("--base-url", default=BASE_URL, help="API base URL")
    args = parser.parse_args()

    BASE_URL = args.base_url
    asyncio.run(run_benchmark(args.iterations))


if __name__ == "__main__":
    main()
