import pytest

from nyc_taxi_ingest.batch import BatchAccumulator, ProgressReporter, invoke
from nyc_taxi_ingest.stats import ParseStatistics


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_invoke_handles_sync_and_async_callbacks():
    async def double_async(x):
        return x * 2

    assert await invoke(lambda x: x * 2, 3) == 6
    assert await invoke(double_async, 3) == 6
    assert await invoke(None, 3) is None


@pytest.mark.asyncio
async def test_batches_are_sized_and_numbered():
    delivered = []
    stats = ParseStatistics()
    acc = BatchAccumulator(2, on_batch=lambda batch, n: delivered.append((n, batch)), stats=stats)

    for i in range(5):
        await acc.add(i)
    await acc.flush()

    assert delivered == [(1, [0, 1]), (2, [2, 3]), (3, [4])]
    assert stats.batches_flushed == 3
    assert len(acc) == 0


@pytest.mark.asyncio
async def test_flush_without_pending_records_delivers_nothing():
    delivered = []
    acc = BatchAccumulator(3, on_batch=lambda batch, n: delivered.append(n))

    await acc.add("a")
    await acc.add("b")
    await acc.add("c")
    await acc.flush()

    assert delivered == [1]


@pytest.mark.asyncio
async def test_async_batch_sink_is_awaited():
    delivered = []

    async def sink(batch, n):
        delivered.append(len(batch))

    acc = BatchAccumulator(2, on_batch=sink)
    for i in range(3):
        await acc.add(i)
    await acc.flush()

    assert delivered == [2, 1]


@pytest.mark.asyncio
async def test_failing_sink_does_not_stop_later_batches():
    delivered, errors = [], []
    stats = ParseStatistics()

    def sink(batch, n):
        if n == 1:
            raise ConnectionError("clickhouse down")
        delivered.append(n)

    acc = BatchAccumulator(1, on_batch=sink, on_error=errors.append, stats=stats)
    for i in range(3):
        await acc.add(i)

    assert delivered == [2, 3]
    assert isinstance(errors[0], ConnectionError)
    assert stats.errors[0].kind == "batch"
    assert stats.errors[0].batch_number == 1
    assert stats.batches_flushed == 3


def test_batch_size_must_be_positive():
    with pytest.raises(ValueError):
        BatchAccumulator(0)


@pytest.mark.asyncio
async def test_progress_is_throttled():
    clock = FakeClock()
    seen = []
    stats = ParseStatistics(bytes_processed=50, total_records=5)
    reporter = ProgressReporter(seen.append, file_size=200, interval=1.0, clock=clock)

    for now in (0.5, 1.0, 1.5, 1.9, 2.2):
        clock.now = now
        await reporter.maybe_report(stats)

    assert len(seen) == 2
    assert seen[0].percentage == 25.0
    assert seen[0].records_processed == 5


@pytest.mark.asyncio
async def test_progress_without_callback():
    reporter = ProgressReporter(None, file_size=10, clock=FakeClock())

    assert await reporter.maybe_report(ParseStatistics()) is None
