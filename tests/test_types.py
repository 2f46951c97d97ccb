from datetime import datetime, timedelta, timezone

import pytest

from metricsserver.types import (
    MAX_INT64,
    RESOURCE_CPU,
    RESOURCE_MEMORY,
    Format,
    MetricsPoint,
    NamespacedName,
    Quantity,
    resource_usage,
    uint64_quantity,
)

MI_BYTE = 1024 * 1024
CORE_SECOND = 1000 * 1000 * 1000


def new_metrics_point(st, ts, cpu, memory):
    return MetricsPoint(
        start_time=st, timestamp=ts, cumulative_cpu_used=cpu, memory_usage=memory
    )


@pytest.mark.parametrize(
    "value, expected",
    [
        (MAX_INT64 + 10, Quantity(MAX_INT64 // 10 + 1, 1)),
        (MAX_INT64 + 20, Quantity(MAX_INT64 // 10 + 2, 1)),
        (MAX_INT64 - 10, Quantity(MAX_INT64 - 10, 0)),
        (MAX_INT64 - 100, Quantity(MAX_INT64 - 100, 0)),
    ],
)
def test_uint64_quantity(value, expected):
    assert uint64_quantity(value, Format.DECIMAL_SI, 0) == expected


def test_uint64_quantity_keeps_format():
    assert uint64_quantity(3 * MI_BYTE, Format.BINARY_SI, 0) == Quantity(
        3 * MI_BYTE, 0, Format.BINARY_SI
    )


def test_uint64_quantity_rejects_negative():
    with pytest.raises(ValueError):
        uint64_quantity(-1, Format.DECIMAL_SI, 0)


def test_resource_usage_basic():
    start = datetime.now(timezone.utc)
    prev = new_metrics_point(start, start + timedelta(seconds=10), 10 * CORE_SECOND, 2 * MI_BYTE)
    last = new_metrics_point(start, start + timedelta(seconds=20), 20 * CORE_SECOND, 3 * MI_BYTE)
    usage, info = resource_usage(last, prev)
    assert usage == {
        RESOURCE_CPU: Quantity(CORE_SECOND, -9),
        RESOURCE_MEMORY: Quantity(3 * MI_BYTE, 0, Format.BINARY_SI),
    }
    assert info.timestamp == start + timedelta(seconds=20)
    assert info.window == timedelta(seconds=10)


def test_resource_usage_fractional_cores():
    start = datetime.now(timezone.utc)
    prev = new_metrics_point(start, start + timedelta(seconds=15), 10 * CORE_SECOND, MI_BYTE)
    last = new_metrics_point(start, start + timedelta(seconds=25), 35 * CORE_SECOND, 2 * MI_BYTE)
    usage, _ = resource_usage(last, prev)
    assert usage[RESOURCE_CPU] == Quantity(int(2.5 * CORE_SECOND), -9)
    assert usage[RESOURCE_MEMORY] == Quantity(2 * MI_BYTE, 0, Format.BINARY_SI)


def test_resource_usage_zero_start_time():
    start = datetime.now(timezone.utc)
    prev = new_metrics_point(None, start + timedelta(seconds=120), 1 * CORE_SECOND, 4 * MI_BYTE)
    last = new_metrics_point(None, start + timedelta(seconds=125), 6 * CORE_SECOND, 5 * MI_BYTE)
    usage, info = resource_usage(last, prev)
    assert usage[RESOURCE_CPU] == Quantity(CORE_SECOND, -9)
    assert info.window == timedelta(seconds=5)


def test_resource_usage_decrease_raises():
    start = datetime.now(timezone.utc)
    prev = new_metrics_point(start, start + timedelta(seconds=15), 50 * CORE_SECOND, 3 * MI_BYTE)
    last = new_metrics_point(start, start + timedelta(seconds=25), 10 * CORE_SECOND, 5 * MI_BYTE)
    with pytest.raises(ValueError, match="unexpected decrease in cumulative CPU usage value"):
        resource_usage(last, prev)


def test_resource_usage_zero_window_raises():
    start = datetime.now(timezone.utc)
    point = new_metrics_point(start, start + timedelta(seconds=10), CORE_SECOND, MI_BYTE)
    with pytest.raises(ValueError):
        resource_usage(point, point)


def test_quantity_value_and_milli_value():
    assert Quantity(3 * MI_BYTE, 0, Format.BINARY_SI).value() == 3 * MI_BYTE
    assert Quantity(500000000, -9).milli_value() == 500
    assert Quantity(CORE_SECOND, -9).value() == 1
    assert Quantity(1, -9).milli_value() == 1
    assert Quantity(MAX_INT64 // 10 + 1, 1).value() == (MAX_INT64 // 10 + 1) * 10


def test_namespaced_name_str_and_hash():
    ref = NamespacedName(namespace="ns1", name="pod1")
    assert str(ref) == "ns1/pod1"
    assert {ref: 1}[NamespacedName(namespace="ns1", name="pod1")] == 1