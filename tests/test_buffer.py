import pytest

from cost_profiler.sdk.buffer import BoundedBuffer


def test_overflow_keeps_newest_in_order():
    buffer = BoundedBuffer(5)
    dropped = sum(buffer.append(i) for i in range(8))

    assert dropped == 3
    assert buffer.snapshot() == [3, 4, 5, 6, 7]


def test_take_is_fifo():
    buffer = BoundedBuffer(10)
    for i in range(4):
        buffer.append(i)

    assert buffer.take(3) == [0, 1, 2]
    assert buffer.take(3) == [3]
    assert buffer.take(3) == []


def test_prepend_restores_failed_batch_ahead_of_newer_items():
    buffer = BoundedBuffer(10)
    for i in range(5):
        buffer.append(i)
    batch = buffer.take(3)
    buffer.append(5)

    assert buffer.prepend(batch) == 0
    assert buffer.snapshot() == [0, 1, 2, 3, 4, 5]


def test_prepend_overflow_cuts_from_the_back():
    buffer = BoundedBuffer(4)
    for i in range(4):
        buffer.append(i)
    batch = buffer.take(2)
    buffer.append(4)
    buffer.append(5)

    assert buffer.prepend(batch) == 2
    assert buffer.snapshot() == [0, 1, 2, 3]


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        BoundedBuffer(0)
