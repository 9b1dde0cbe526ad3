import asyncio
import random
import time
import statistics
import tracemalloc
from httpx import AsyncClient, ASGITransport
from main import app, app_state, now_ms, stop_sweeper
from eviction.timestamp_heap import TimestampHeap
from storage.buffer_registry import BufferRegistry


class PerformanceBenchmark:
    def __init__(self):
        self.latencies = []

    def _report_metrics(self, test_name: str, duration: float, num_ops: int):
        throughput = num_ops / duration
        avg_latency = statistics.mean(self.latencies)
        p50 = statistics.median(self.latencies)
        p95 = statistics.quantiles(self.latencies, n=20)[18] if len(self.latencies) >= 20 else max(self.latencies)
        p99 = statistics.quantiles(self.latencies, n=100)[98] if len(self.latencies) >= 100 else max(self.latencies)

        print(f"\n{'=' * 60}")
        print(f"  {test_name}")
        print(f"{'=' * 60}")
        print(f"  Operations:  {num_ops}")
        print(f"  Duration:    {duration:.2f}s")
        print(f"  Throughput:  {throughput:,.0f} ops/s")
        print(f"  Avg Latency: {avg_latency * 1000:.2f}us")
        print(f"  p50 Latency: {p50 * 1000:.2f}us")
        print(f"  p95 Latency: {p95 * 1000:.2f}us")
        print(f"  p99 Latency: {p99 * 1000:.2f}us")
        print(f"{'=' * 60}")

        return {
            "throughput": throughput,
            "avg_latency": avg_latency,
            "p50": p50,
            "p95": p95,
            "p99": p99,
        }

    def _reset(self):
        self.latencies.clear()

    def _timed(self, fn, *args):
        start = time.perf_counter()
        result = fn(*args)
        self.latencies.append((time.perf_counter() - start) * 1000)
        return result

    def run_heap_test(self, num_buffers: int = 100000, touches: int = 200000):
        """Push, update (activity refresh) and pop directly against the heap."""
        rng = random.Random(7)
        heap = TimestampHeap()
        base = now_ms()

        start_time = time.perf_counter()
        handles = [self._timed(heap.push, f"buf_{i}", base + rng.randint(0, 60000)) for i in range(num_buffers)]
        for i in range(touches):
            self._timed(heap.update, rng.choice(handles), base + 60000 + i)
        while not heap.is_empty():
            self._timed(heap.pop)
        duration = time.perf_counter() - start_time

        return self._report_metrics(
            f"Heap Test ({num_buffers} push, {touches} update, {num_buffers} pop)",
            duration,
            num_buffers * 2 + touches
        )

    async def run_registry_test(self, num_events: int = 50000, num_buffers: int = 5000):
        self._reset()
        rng = random.Random(11)
        registry = BufferRegistry()
        base = now_ms()

        start_time = time.perf_counter()
        for i in range(num_events):
            start = time.perf_counter()
            await registry.record_event(f"buf_{rng.randrange(num_buffers)}", base + i)
            self.latencies.append((time.perf_counter() - start) * 1000)

        start = time.perf_counter()
        evicted = await registry.expire(base + num_events // 2)
        self.latencies.append((time.perf_counter() - start) * 1000)
        duration = time.perf_counter() - start_time

        print(f"\n  Evicted {len(evicted)} of {num_buffers} buffers in one sweep")
        return self._report_metrics(f"Registry Test ({num_events} events)", duration, num_events + 1)

    async def run_api_test(self, num_requests: int = 2000, concurrency: int = 100):
        self._reset()

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            semaphore = asyncio.Semaphore(concurrency)

            async def bounded_request(i):
                async with semaphore:
                    start = time.perf_counter()
                    await client.post("/v1/buffers/events", json={"buffer_id": f"buf_{i % 500}"})
                    self.latencies.append((time.perf_counter() - start) * 1000)

            start_time = time.perf_counter()
            await asyncio.gather(*[bounded_request(i) for i in range(num_requests)])
            duration = time.perf_counter() - start_time

            response = await client.get("/v1/buffers/status")
            print(f"\n  Tracked Buffers: {response.json().get('tracked_buffers')}")

        return self._report_metrics(f"API Test ({num_requests} events)", duration, num_requests)

    async def run_all_benchmarks(self):
        print("\n" + "#" * 60)
        print("  EVENT BUFFER EXPIRY TRACKER — PERFORMANCE BENCHMARK")
        print("#" * 60)

        tracemalloc.start()

        results = {}
        results["heap"] = self.run_heap_test()
        results["registry"] = await self.run_registry_test()
        results["api"] = await self.run_api_test()

        peak_memory = tracemalloc.get_traced_memory()[1]
        tracemalloc.stop()

        print(f"\n{'=' * 60}")
        print(f"  MEMORY")
        print(f"{'=' * 60}")
        print(f"  Peak Memory Usage: {peak_memory / 1024:.1f} KB ({peak_memory / (1024*1024):.2f} MB)")
        print(f"{'=' * 60}")

        print(f"\n{'#' * 60}")
        print(f"  SUMMARY")
        print(f"{'#' * 60}")
        heap = results["heap"]
        print(f"  Heap Throughput: {heap['throughput']:,.0f} ops/s {'PASS' if heap['throughput'] > 100000 else 'FAIL'} (target: >100,000)")
        print(f"  Heap p99:        {heap['p99'] * 1000:.2f}us")
        print(f"  API p95 Latency: {results['api']['p95']:.2f}ms")
        print(f"  Peak Memory:     {peak_memory / 1024:.1f} KB")
        print(f"{'#' * 60}\n")

        return results


async def main():
    app_state["registry"] = BufferRegistry()

    benchmark = PerformanceBenchmark()
    try:
        await benchmark.run_all_benchmarks()
    finally:
        await stop_sweeper()


if __name__ == "__main__":
    asyncio.run(main())
