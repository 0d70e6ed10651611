"""Parameter Set formatting, ordering and ownership."""

import pytest

from simbridge import (
    Index,
    InvalidArgumentError,
    NullPointerError,
    ParamSet,
    ParamType,
)


def test_formats_each_type(allocator):
    with ParamSet.create(allocator) as params:
        params.add("M", ParamType.INT, 16)
        params.add("ratio", ParamType.DOUBLE, 0.5)
        params.add("algo", ParamType.STRING, "fast")
        params.add("raw", ParamType.STRING, b"bytes")
        assert params.as_list() == ["M=16", "ratio=0.500000", "algo=fast", "raw=bytes"]
    assert allocator.outstanding == 0


def test_order_and_duplicates_preserved():
    params = ParamSet.create()
    params.add("efSearch", ParamType.INT, 10)
    params.add("M", ParamType.INT, 8)
    params.add("efSearch", ParamType.INT, 20)
    assert list(params) == ["efSearch=10", "M=8", "efSearch=20"]
    assert len(params) == 3
    params.free()


def test_names_are_not_validated():
    with ParamSet.create() as params:
        params.add("definitely_not_a_real_param", ParamType.INT, 1)
        assert params.as_list() == ["definitely_not_a_real_param=1"]


@pytest.mark.parametrize(
    "type_tag, value",
    [
        (ParamType.INT, True),
        (ParamType.INT, 1.5),
        (ParamType.DOUBLE, "1.0"),
        (ParamType.STRING, 3),
        (7, 1),
    ],
)
def test_rejects_mismatched_values(type_tag, value):
    with ParamSet.create() as params:
        with pytest.raises(InvalidArgumentError):
            params.add("x", type_tag, value)
        assert len(params) == 0


def test_rejects_empty_name_and_missing_value():
    with ParamSet.create() as params:
        with pytest.raises(InvalidArgumentError):
            params.add("", ParamType.INT, 1)
        with pytest.raises(InvalidArgumentError):
            params.add("M", ParamType.INT, None)


def test_use_after_free(allocator):
    params = ParamSet.create(allocator)
    params.add("M", ParamType.INT, 4)
    assert allocator.outstanding == 1
    params.free()
    assert params.freed
    assert allocator.outstanding == 0
    with pytest.raises(NullPointerError):
        params.add("M", ParamType.INT, 4)
    with pytest.raises(NullPointerError):
        params.free()


def test_from_dict_infers_types():
    with ParamSet.from_dict({"M": 16, "scale": 2.0, "name": "x", "flag": True}) as params:
        assert params.as_list() == ["M=16", "scale=2.000000", "name=x", "flag=1"]


def test_param_set_drives_build(vectors):
    with Index.create("l2", method="brute_force") as index:
        index.add_data_point_batch(vectors[:10])
        with ParamSet.create() as params:
            index.build(params)
        assert index.is_built
