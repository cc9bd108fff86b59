import copy

import pytest

from backend.services.patching import (
    IndexToken,
    KeyToken,
    MAX_INDEX_GROWTH,
    PathOperationError,
    apply_patch,
    parse_path,
    set_nested,
)
from backend.services.schemas import PatchOperation


def make_config():
    return {
        "chart": {"type": "bar"},
        "title": {"text": "Sales"},
        "legend": {"enabled": True},
        "series": [{"name": "East", "data": []}],
    }


def test_scenario_replace_key_and_indexed_paths():
    config = {"legend": {"enabled": True}, "series": [{"data": []}]}
    operations = [
        {"path": "legend.enabled", "op": "replace", "value": False},
        {"path": "series.0.data", "op": "replace", "value": [1, 2, 3]},
    ]

    assert apply_patch(config, operations) == {"legend": {"enabled": False}, "series": [{"data": [1, 2, 3]}]}


def test_original_config_is_untouched():
    config = make_config()
    snapshot = copy.deepcopy(config)
    value = {"text": "New"}

    patched = apply_patch(
        config,
        [
            {"path": "title", "op": "replace", "value": value},
            {"path": "series.0.data.0", "op": "add", "value": 5},
            {"path": "legend", "op": "remove"},
        ],
    )

    assert config == snapshot
    value["text"] = "mutated later"
    assert patched["title"] == {"text": "New"}


def test_replace_is_idempotent():
    operation = PatchOperation(path="title.text", op="replace", value="Revenue")
    once = apply_patch(make_config(), [operation])
    assert apply_patch(once, [operation]) == once
    assert apply_patch(make_config(), [operation, operation]) == once


def test_disjoint_operations_commute():
    first = {"path": "title.text", "op": "replace", "value": "Revenue"}
    second = {"path": "yAxis.plotLines.0", "op": "add", "value": {"value": 10}}

    assert apply_patch(make_config(), [first, second]) == apply_patch(make_config(), [second, first])


def test_parse_path_tokens():
    assert parse_path("series.0.data") == [KeyToken("series"), IndexToken(0), KeyToken("data")]
    assert parse_path("a.0x1.1.5.-1") == [
        KeyToken("a"),
        KeyToken("0x1"),
        IndexToken(1),
        IndexToken(5),
        KeyToken("-1"),
    ]
    with pytest.raises(PathOperationError):
        parse_path("")


def test_missing_intermediates_are_created_by_next_token():
    patched = apply_patch({}, [{"path": "yAxis.plotLines.1.label.text", "op": "add", "value": "Target"}])
    assert patched == {"yAxis": {"plotLines": [None, {"label": {"text": "Target"}}]}}


def test_scalar_intermediate_is_replaced():
    patched = apply_patch({"legend": None, "credits": 3}, [
        {"path": "legend.enabled", "op": "replace", "value": False},
        {"path": "credits.enabled", "op": "replace", "value": False},
    ])
    assert patched == {"legend": {"enabled": False}, "credits": {"enabled": False}}


def test_final_index_on_object_is_an_error():
    with pytest.raises(PathOperationError):
        set_nested({"chart": {}}, parse_path("chart.0"), 1)


def test_failed_operation_does_not_abort_the_batch():
    patched = apply_patch(
        make_config(),
        [
            {"path": "chart.0", "op": "replace", "value": "pie"},
            {"path": "", "op": "replace", "value": 1},
            {"path": "title.text", "op": "teleport", "value": 1},
            {"path": "title.text", "op": "replace"},
            {"path": "legend.enabled", "op": "replace", "value": False},
        ],
    )

    assert patched["chart"] == {"type": "bar"}
    assert patched["title"] == {"text": "Sales"}
    assert patched["legend"] == {"enabled": False}


def test_remove_key_and_index():
    config = make_config()
    config["series"].append({"name": "West", "data": []})

    patched = apply_patch(config, [{"path": "series.0", "op": "remove"}, {"path": "legend.enabled", "op": "remove"}])

    assert [item["name"] for item in patched["series"]] == ["West"]
    assert patched["legend"] == {}


def test_remove_missing_path_is_a_noop():
    config = make_config()
    patched = apply_patch(
        config,
        [
            {"path": "xAxis.title.text", "op": "remove"},
            {"path": "series.7", "op": "remove"},
            {"path": "chart.type.inner", "op": "remove"},
        ],
    )
    assert patched == config


def test_null_value_is_an_explicit_value():
    patched = apply_patch(make_config(), [{"path": "title.text", "op": "replace", "value": None}])
    assert patched["title"] == {"text": None}


@pytest.mark.parametrize("index", ["99999999999999999999", "100000000", "9" * 5000])
def test_oversized_index_is_skipped_and_batch_continues(index):
    config = {"series": [{"data": []}], "legend": {"enabled": True}}

    patched = apply_patch(
        config,
        [
            {"path": f"series.{index}", "op": "replace", "value": 1},
            {"path": f"series.0.data.{index}", "op": "add", "value": 1},
            {"path": "legend.enabled", "op": "replace", "value": False},
        ],
    )

    assert patched == {"series": [{"data": []}], "legend": {"enabled": False}}


def test_index_growth_is_bounded():
    with pytest.raises(PathOperationError):
        set_nested({"items": []}, parse_path(f"items.{MAX_INDEX_GROWTH}"), 1)

    target = {"items": []}
    set_nested(target, parse_path(f"items.{MAX_INDEX_GROWTH - 1}"), 1)
    assert len(target["items"]) == MAX_INDEX_GROWTH


def test_negative_segment_on_array_is_skipped_and_batch_continues():
    patched = apply_patch(
        make_config(),
        [
            {"path": "series.-1", "op": "replace", "value": {"name": "Last"}},
            {"path": "title.text", "op": "replace", "value": "Revenue"},
        ],
    )

    assert patched["series"] == [{"name": "East", "data": []}]
    assert patched["title"] == {"text": "Revenue"}
