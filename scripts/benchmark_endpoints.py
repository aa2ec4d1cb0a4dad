#!/usr/bin/env python3
"""Simple HTTP benchmark for the catalog endpoints.

Usage:
  python scripts/benchmark_endpoints.py --base http://127.0.0.1:8000 --brand Nike --filter kolir=Chorny
"""

import argparse
import statistics
import time
import urllib.error
import urllib.parse
import urllib.request


def timed_request(url, timeout=20):
    req = urllib.request.Request(url, headers={"Accept": "application/json"}, method="GET")
    start = time.perf_counter()
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = resp.read()
            status = resp.status
    except urllib.error.HTTPError as exc:
        body = exc.read() if exc.fp else b""
        status = exc.code
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    return status, elapsed_ms, body


def run_series(name, url, n):
    results = []
    statuses = []
    for _ in range(n):
        status, ms, _ = timed_request(url)
        results.append(ms)
        statuses.append(status)
    ordered = sorted(results)
    return {
        "name": name,
        "status_set": sorted(set(statuses)),
        "min_ms": round(ordered[0], 2),
        "p50_ms": round(statistics.median(results), 2),
        "p95_ms": round(ordered[max(0, int(n * 0.95) - 1)], 2),
        "max_ms": round(ordered[-1], 2),
        "avg_ms": round(sum(results) / len(results), 2),
    }


def filter_query(pairs):
    return urllib.parse.urlencode([(f"filter[{slug}][]", value) for slug, value in pairs])


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--base", default="http://127.0.0.1:8000", help="Base URL")
    ap.add_argument("--brand", help="Value of the primary facet to filter on")
    ap.add_argument("--brand-slug", default="brend")
    ap.add_argument(
        "--filter",
        action="append",
        default=[],
        metavar="SLUG=VALUE",
        help="Extra attribute filter, may be repeated",
    )
    ap.add_argument("--loops", type=int, default=12, help="Requests per endpoint")
    args = ap.parse_args()

    base = args.base.rstrip("/")
    loops = max(5, args.loops)

    pairs = []
    if args.brand:
        pairs.append((args.brand_slug, args.brand))
    for raw in args.filter:
        slug, _, value = raw.partition("=")
        if slug and value:
            pairs.append((slug, value))
    query = filter_query(pairs)

    endpoints = [
        ("products_unfiltered", f"{base}/api/catalog/products/?page=1&limit=20"),
        ("products_price_desc", f"{base}/api/catalog/products/?sort_by=price_desc&limit=20"),
        ("filters_unfiltered", f"{base}/api/catalog/filters/"),
        ("catalog_stats", f"{base}/api/catalog/stats/"),
    ]
    if query:
        endpoints += [
            ("products_filtered", f"{base}/api/catalog/products/?{query}&sort_by=price_asc"),
            ("filters_filtered", f"{base}/api/catalog/filters/?{query}"),
        ]

    print("\n=== Cold Requests (first-hit) ===")
    for name, url in endpoints:
        status, ms, body = timed_request(url)
        print(f"{name:22} status={status} cold_ms={ms:.2f}")
        if status >= 400:
            preview = body[:160].decode("utf-8", "ignore").replace("\n", " ")
            print(f"  error_preview: {preview}")

    print("\n=== Warm Requests (cached/steady) ===")
    for name, url in endpoints:
        s = run_series(name, url, loops)
        print(
            f"{s['name']:22} statuses={s['status_set']} "
            f"p50={s['p50_ms']}ms p95={s['p95_ms']}ms avg={s['avg_ms']}ms "
            f"min={s['min_ms']}ms max={s['max_ms']}ms"
        )


if __name__ == "__main__":
    main()
