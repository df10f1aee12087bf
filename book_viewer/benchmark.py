#!/usr/bin/env python3
"""
Micro-benchmark for Book Viewer performance.

Tests:
1. Order book update throughput
2. Aggregation (project) speed at a coarse increment
3. Full read path (project + top levels for both sides)

Usage:
    python -m book_viewer.benchmark
"""

from __future__ import annotations

import random
import time
from decimal import Decimal
from statistics import mean, stdev

from .datafeed.orderbook import OrderBookStore
from .engine.aggregation import project, top_levels
from .types import Change

TICK = Decimal("0.01")


def generate_mock_snapshot(base_price: Decimal = Decimal("60000"), levels: int = 1000) -> tuple[list, list]:
    """Generate mock [price, size] string pairs for both sides."""
    bids = []
    asks = []

    for i in range(levels):
        bids.append([str(base_price - (i + 1) * TICK), f"{random.uniform(0.001, 5):.8f}"])
        asks.append([str(base_price + (i + 1) * TICK), f"{random.uniform(0.001, 5):.8f}"])

    return bids, asks


def generate_mock_update(base_price: Decimal, changes: int = 50) -> list[Change]:
    """Generate a mock l2update change list. 20% of entries remove a level."""
    result = []

    for _ in range(changes):
        side = random.choice(("buy", "sell"))
        offset = random.randint(1, 500) * TICK
        price = base_price - offset if side == "buy" else base_price + offset
        size = f"{random.uniform(0.001, 5):.8f}" if random.random() > 0.2 else "0"
        result.append(Change(side, str(price), size))

    return result


def _loaded_store() -> OrderBookStore:
    store = OrderBookStore()
    bids, asks = generate_mock_snapshot()
    store.load_snapshot(bids, asks)
    return store


def benchmark_orderbook_updates(iterations: int = 10000) -> None:
    """Benchmark order book update throughput."""
    print("\n=== Order Book Update Benchmark ===")

    store = _loaded_store()
    updates = [generate_mock_update(Decimal("60000")) for _ in range(iterations)]

    start = time.perf_counter()
    for changes in updates:
        store.apply_update(changes)
    elapsed = time.perf_counter() - start

    print(f"  Updates applied: {iterations:,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {iterations / elapsed:,.0f} updates/sec")
    print(f"  Per update: {elapsed/iterations*1_000_000:.1f}µs")


def _time_calls(fn, iterations: int) -> list[float]:
    times = []
    for _ in range(iterations):
        start = time.perf_counter()
        fn()
        times.append(time.perf_counter() - start)
    return times


def benchmark_projection(iterations: int = 500) -> None:
    """Benchmark bucketing the full book at 0.50."""
    print("\n=== Projection Benchmark ===")

    state = _loaded_store().snapshot()
    times = _time_calls(lambda: project(state, Decimal("0.50")), iterations)

    print(f"  Iterations: {iterations}")
    print(f"  Avg time: {mean(times) * 1000:.3f}ms")
    print(f"  Std dev: {stdev(times) * 1000:.3f}ms")


def benchmark_read_path(iterations: int = 500) -> None:
    """Benchmark what the projector does per frame."""
    print("\n=== Full Read Path Benchmark ===")

    store = _loaded_store()

    def read() -> None:
        bucketed = project(store.snapshot(), Decimal("0.05"))
        top_levels(bucketed.bids)
        top_levels(bucketed.asks)

    times = _time_calls(read, iterations)
    avg_time = mean(times) * 1000

    print(f"  Iterations: {iterations}")
    print(f"  Avg time: {avg_time:.3f}ms")
    print(f"  Max FPS possible: {1000/avg_time:,.0f}")


def main() -> None:
    """Run all benchmarks."""
    print("=" * 60)
    print("Book Viewer Performance Benchmark")
    print("=" * 60)

    benchmark_orderbook_updates()
    benchmark_projection()
    benchmark_read_path()

    print("\n" + "=" * 60)
    print("Benchmark complete.")
    print("=" * 60)


if __name__ == "__main__":
    main()
