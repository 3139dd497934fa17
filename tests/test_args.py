import pytest

from packages.indexers.substrate.entity_graph.args import ArgsShape, args_to_strings, classify_args


def test_sequence_keeps_strings_and_serializes_objects():
    assert args_to_strings(["hello", {"x": 1}]) == ["hello", '{"x":1}']


def test_bare_string_becomes_single_element():
    assert args_to_strings("solo") == ["solo"]


def test_mapping_values_in_insertion_order():
    assert args_to_strings({"a": 1, "b": {"c": 2}}) == ["1", '{"c":2}']


def test_absent_args():
    assert args_to_strings(None) == []


def test_sequence_scalars_use_json_literals():
    assert args_to_strings([1, True, None, 2.5]) == ["1", "true", "null", "2.5"]


def test_nested_sequence_is_serialized():
    assert args_to_strings([[1, 2], {"k": [3]}]) == ["[1,2]", '{"k":[3]}']


def test_non_ascii_is_kept():
    assert args_to_strings([{"name": "żółw"}]) == ['{"name":"żółw"}']


def test_mapping_with_string_and_list_values():
    assert args_to_strings({"who": "5Grw", "ids": [1, 2]}) == ["5Grw", "[1,2]"]


def test_bare_number_yields_nothing():
    assert args_to_strings(42) == []


@pytest.mark.parametrize("args, shape", [
    (None, ArgsShape.ABSENT),
    ("x", ArgsShape.SCALAR),
    (7, ArgsShape.SCALAR),
    ([1], ArgsShape.SEQUENCE),
    ((1,), ArgsShape.SEQUENCE),
    ({"a": 1}, ArgsShape.MAPPING),
])
def test_classify_args(args, shape):
    assert classify_args(args) is shape


def test_empty_string_yields_nothing():
    assert args_to_strings("") == []


def test_integral_floats_print_without_fraction():
    assert args_to_strings([1.0, 2.5]) == ["1", "2.5"]
    assert args_to_strings({"a": 3.0, "b": {"c": 1.0, "d": [0.5, 4.0]}}) == ["3", '{"c":1,"d":[0.5,4]}']
