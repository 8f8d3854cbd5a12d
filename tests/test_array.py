from __future__ import annotations

import pytest

from cosa.errors import MutationError
from cosa.immutable import create, is_immutable_type


def test_array_reads_and_iteration() -> None:
    items = create([{"n": 1}, {"n": 2}, {"n": 3}])

    assert is_immutable_type(items, "Array")
    assert items.length == 3
    assert len(items) == 3
    assert items[0].n == 1
    assert items.at(-1).n == 3
    assert [item.n for item in items] == [1, 2, 3]
    assert items[1:].to_object() == [{"n": 2}, {"n": 3}]


def test_array_writes_raise() -> None:
    items = create([1, 2])

    with pytest.raises(MutationError):
        items[0] = 5
    with pytest.raises(MutationError):
        del items[0]


def test_array_transformations_return_new_arrays() -> None:
    items = create([3, 1, 2])

    assert items.push(4).to_object() == [3, 1, 2, 4]
    assert items.pop().to_object() == [3, 1]
    assert items.shift().to_object() == [1, 2]
    assert items.unshift(0).to_object() == [0, 3, 1, 2]
    assert items.concat([5], 6).to_object() == [3, 1, 2, 5, 6]
    assert items.reverse().to_object() == [2, 1, 3]
    assert items.sort().to_object() == [1, 2, 3]
    assert items.sort(lambda a, b: b - a).to_object() == [3, 2, 1]
    assert items.sort(key=lambda value: -value).to_object() == [3, 2, 1]
    assert items.splice(1, 1, 9, 8).to_object() == [3, 9, 8, 2]
    assert items.splice(-1).to_object() == [3, 1]
    assert items.slice(1).to_object() == [1, 2]
    assert items.to_object() == [3, 1, 2]


def test_array_callbacks_receive_index_when_requested() -> None:
    items = create(["a", "b", "c"])

    assert items.map(lambda value: value.upper()).to_object() == ["A", "B", "C"]
    assert items.map(lambda value, index: f"{index}{value}").to_object() == ["0a", "1b", "2c"]
    assert items.filter(lambda value, index: index != 1).to_object() == ["a", "c"]
    assert items.find(lambda value: value == "b") == "b"
    assert items.find(lambda value: value == "z") is None
    assert items.find_index(lambda value: value == "c") == 2
    assert items.some(lambda value: value == "a")
    assert not items.every(lambda value: value == "a")

    seen: list[tuple[str, int, int]] = []
    items.for_each(lambda value, index, array: seen.append((value, index, array.length)))
    assert seen == [("a", 0, 3), ("b", 1, 3), ("c", 2, 3)]


def test_array_reduce_and_search() -> None:
    numbers = create([1, 2, 3, 4])

    assert numbers.reduce(lambda total, value: total + value) == 10
    assert numbers.reduce(lambda total, value: total + value, 10) == 20
    assert numbers.reduce_right(lambda acc, value: acc + str(value), "") == "4321"
    assert numbers.index_of(3) == 2
    assert numbers.index_of(9) == -1
    assert numbers.includes(4)
    assert numbers.join("-") == "1-2-3-4"
    assert str(numbers) == "1,2,3,4"
    assert 2 in numbers

    with pytest.raises(TypeError):
        create([]).reduce(lambda total, value: total + value)


def test_array_items_follow_item_definition() -> None:
    definition = {
        "type": "array",
        "items": {"name": "Line", "properties": {"qty": {"type": "number", "default": 1}}},
    }
    lines = create([{}, {"qty": 4}], definition=definition)

    assert is_immutable_type(lines[0], "Line")
    assert lines[0].qty == 1
    assert lines[1].qty == 4


def test_array_callbacks_receive_the_receiving_array() -> None:
    items = create(["a", "b"])
    receivers: list = []

    items.for_each(lambda value, index, array: receivers.append(array))
    items.map(lambda value, index, array: receivers.append(array))
    items.some(lambda value, index, array: receivers.append(array))

    assert len(receivers) == 6
    assert all(receiver is items for receiver in receivers)
