import argparse
import os
import random
import statistics
import time

from fastapi.testclient import TestClient

from memostore.core import config
from memostore.db import repo
from memostore.main import create_app


def _random_text(words, count):
    return " ".join(random.choice(words) for _ in range(count))


def _ensure_api_keys(api_key: str, owner_id: int) -> None:
    if os.getenv("API_KEYS_JSON"):
        return
    os.environ["API_KEYS_JSON"] = f'{{"{api_key}":[{owner_id}]}}'


def main() -> None:
    parser = argparse.ArgumentParser(description="Note listing benchmark")
    parser.add_argument("--owner", type=int, default=1)
    parser.add_argument("--api-key", default="benchmark_key")
    parser.add_argument("--notes", type=int, default=10000)
    parser.add_argument("--queries", type=int, default=500)
    parser.add_argument("--page-size", type=int, default=50)
    parser.add_argument("--threshold-ms", type=float, default=100.0)
    args = parser.parse_args()

    _ensure_api_keys(args.api_key, args.owner)
    if not os.getenv("DB_PATH"):
        os.environ["DB_PATH"] = "./data/benchmark.db"

    config.get_settings.cache_clear()
    app = create_app()
    client = TestClient(app)

    words = ["alpha", "beta", "gamma", "delta", "epsilon", "zeta", "theta"]
    db = app.state.db

    for idx in range(args.notes):
        repo.create_note(
            db,
            args.owner,
            f"Note {idx}",
            _random_text(words, 20),
            [random.choice(words)],
            pinned=idx % 50 == 0,
        )

    url = f"/api/v1/owners/{args.owner}/notes"
    shapes = [
        lambda: {"q": random.choice(words)},
        lambda: {"tags": random.choice(words)},
        lambda: {"q": random.choice(words), "tags": random.choice(words)},
        lambda: {},
    ]

    for _ in range(20):
        client.get(url, headers={"X-API-Key": args.api_key}, params=random.choice(shapes)())

    latencies = []
    for _ in range(args.queries):
        params = random.choice(shapes)()
        params["limit"] = args.page_size
        start = time.perf_counter()
        response = client.get(url, headers={"X-API-Key": args.api_key}, params=params)
        if response.status_code != 200:
            raise SystemExit(f"Unexpected status: {response.status_code}")
        latencies.append((time.perf_counter() - start) * 1000)

    p50 = statistics.median(latencies)
    p95 = statistics.quantiles(latencies, n=100)[94]
    print(f"p50={p50:.2f}ms p95={p95:.2f}ms")
    if p95 > args.threshold_ms:
        raise SystemExit(f"p95 {p95:.2f}ms exceeded threshold {args.threshold_ms}ms")


if __name__ == "__main__":
    main()
