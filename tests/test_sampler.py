import random
from concurrent.futures import ThreadPoolExecutor

from host_telemetry.sampler import CounterSampler, compute_utilization


def _sequence(samples):
    iterator = iter(samples)
    return lambda: next(iterator)


def test_two_core_delta_matches_reference_scenario():
    previous = [{"idle": 100, "user": 50}, {"idle": 80, "user": 70}]
    current = [{"idle": 150, "user": 70}, {"idle": 100, "user": 90}]

    assert compute_utilization(previous, current) == 36.4


def test_sampler_uses_previous_request_sample():
    sampler = CounterSampler(
        read_sample=_sequence(
            [
                [{"idle": 100, "user": 50}, {"idle": 80, "user": 70}],
                [{"idle": 150, "user": 70}, {"idle": 100, "user": 90}],
                [{"idle": 150, "user": 170}, {"idle": 100, "user": 190}],
            ]
        ),
        clock=_sequence([1.0, 2.0, 3.0]),
    )

    assert sampler.sample_utilization() == 36.4
    assert sampler.sample_utilization() == 100.0
    assert sampler.state.taken_at == 3.0
    assert sampler.state.sample[0] == {"idle": 150, "user": 170}


def test_first_call_without_previous_sample_is_zero():
    calls = []

    def read_sample():
        calls.append(1)
        if len(calls) == 1:
            raise OSError("counters not readable yet")
        return [{"idle": 10, "user": 5}]

    sampler = CounterSampler(read_sample=read_sample)

    assert sampler.state is None
    assert sampler.sample_utilization() == 0.0
    assert sampler.state.sample == [{"idle": 10, "user": 5}]


def test_no_elapsed_ticks_is_zero():
    sample = [{"idle": 10, "user": 5, "system": 1}]
    assert compute_utilization(sample, sample) == 0.0


def test_hot_plugged_cores_are_skipped():
    previous = [{"idle": 100, "user": 100}]
    current = [{"idle": 150, "user": 150}, {"idle": 0, "user": 1000}]

    assert compute_utilization(previous, current) == 50.0


def test_guest_time_is_not_double_counted():
    previous = [{"idle": 0, "user": 0, "guest": 0, "guest_nice": 0}]
    current = [{"idle": 50, "user": 50, "guest": 50, "guest_nice": 10}]

    assert compute_utilization(previous, current) == 50.0


def test_utilization_stays_in_range_and_matches_formula():
    rng = random.Random(7)
    previous = [{"idle": rng.randint(0, 1000), "user": rng.randint(0, 1000), "system": rng.randint(0, 1000)} for _ in range(4)]
    for _ in range(200):
        current = [{state: value + rng.randint(0, 300) for state, value in core.items()} for core in previous]
        idle = sum(c["idle"] - p["idle"] for c, p in zip(current, previous))
        total = sum(sum(c.values()) - sum(p.values()) for c, p in zip(current, previous))

        usage = compute_utilization(previous, current)

        assert 0.0 <= usage <= 100.0
        if total > 0:
            expected = 100 - 100 * idle / total
            assert abs(usage - expected) <= 0.05 + 1e-9
        else:
            assert usage == 0.0
        previous = current


def test_concurrent_calls_observe_strict_ordering():
    # Transition k adds k idle ticks out of 100, so a clean ordering yields 100 - k.
    counter = iter(range(10_000))

    def read_sample():
        k = next(counter)
        idle = k * (k + 1) // 2
        return [{"idle": idle, "user": 100 * k - idle}]

    sampler = CounterSampler(read_sample=read_sample)
    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(lambda _: sampler.sample_utilization(), range(50)))

    assert sorted(results) == sorted(float(100 - k) for k in range(1, 51))
