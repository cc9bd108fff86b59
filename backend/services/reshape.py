import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from pydantic import Field

from .schemas import CamelModel, DataTransformerOutput, RecommendationFilter, TabularData

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

AVERAGE_FUNCTIONS = {"avg", "average", "mean"}
SUPPORTED_AGGREGATIONS = {"sum", "count", "countdistinct", "max", "min"} | AVERAGE_FUNCTIONS

_TOP_N = re.compile(r"top\s+(\d+)")
_LAST_N = re.compile(r"last\s+(\d+)")
_ROW_ORDER = "__row_order__"


class TransformationOutcome(CamelModel):
    type: str = "none"
    applied: bool = False
    details: str = ""


class TransformedData(TabularData):
    transformation: TransformationOutcome = Field(default_factory=TransformationOutcome)


def _is_bool(value: Any) -> bool:
    return isinstance(value, (bool, np.bool_))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, np.number)) and not _is_bool(value)


def _value_kind(value: Any) -> str:
    if _is_bool(value):
        return "boolean"
    if _is_number(value):
        return "number"
    return type(value).__name__


def _cell(value: Any) -> Any:
    return None if pd.isna(value) else value


def _frame(rows: Sequence[Mapping[str, Any]], columns: Sequence[str]) -> pd.DataFrame:
    columns = list(dict.fromkeys(columns))
    return pd.DataFrame([[row.get(column) for column in columns] for row in rows], columns=columns, dtype=object)


def _records(frame: pd.DataFrame) -> List[Row]:
    cleaned = frame.astype(object)
    return cleaned.where(cleaned.notna(), None).to_dict(orient="records")


def numeric_series(values: Iterable[Any]) -> pd.Series:
    """Finite numbers as floats; booleans, blanks, text and infinities become NaN."""
    series = pd.Series(list(values), dtype=object)
    series = series.mask(series.map(_is_bool).astype(bool))
    series = series.map(lambda value: value.strip() if isinstance(value, str) else value)
    numbers = pd.to_numeric(series, errors="coerce").astype(float)
    return numbers.replace([np.inf, -np.inf], np.nan)


def to_number(value: Any) -> Optional[float]:
    """Coerce a cell to a finite number, or None when it is empty or non-numeric."""
    number = numeric_series([value]).iloc[0]
    return None if pd.isna(number) else float(number)


def series_key(value: Any) -> str:
    """Column name used for a pivoted group value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _tidy_number(value: float) -> Any:
    return int(value) if float(value).is_integer() else value


def _aggregate(values: pd.Series, function: str, column: str) -> Any:
    name = (function or "").strip().lower()
    if name == "count":
        return int(values.size)

    numbers = numeric_series(values).dropna()
    if numbers.empty:
        return 0

    if name in AVERAGE_FUNCTIONS:
        return float(numbers.mean())
    if name == "countdistinct":
        return int(numbers.nunique())
    if name == "max":
        return _tidy_number(float(numbers.max()))
    if name == "min":
        return _tidy_number(float(numbers.min()))
    if name != "sum":
        logger.debug("Unknown aggregation '%s' for column '%s', using sum", function, column)
    return _tidy_number(float(numbers.sum()))


def aggregate_values(rows: Sequence[Mapping[str, Any]], column: str, function: str) -> Any:
    return _aggregate(pd.Series([row.get(column) for row in rows], dtype=object), function, column)


def group_and_aggregate(
    rows: Sequence[Mapping[str, Any]],
    group_by: Sequence[str],
    aggregations: Mapping[str, str],
) -> List[Row]:
    """Bucket rows by the group-by tuple and emit one aggregated row per bucket.

    Buckets keep first-seen order; ``count`` is the bucket size. An empty
    ``group_by`` yields no rows rather than collapsing the whole table.
    """
    if not group_by or not rows:
        return []

    keys = list(group_by)
    frame = _frame(rows, [*keys, *aggregations.keys()])
    result: List[Row] = []
    for _, members in frame.groupby(keys, sort=False, dropna=False):
        first = members.iloc[0]
        output: Row = {column: _cell(first[column]) for column in keys}
        for column, function in aggregations.items():
            output[column] = _aggregate(members[column], function, column)
        result.append(output)
    return result


def pivot_rows(
    rows: Sequence[Mapping[str, Any]],
    x_key: str,
    group_key: str,
    value_key: str,
) -> Tuple[List[Row], List[Dict[str, str]]]:
    """Spread ``value_key`` into one column per distinct ``group_key`` value.

    Rows and series keep first-seen order and the last value written to a cell
    wins. x values of different kinds (``1`` and ``True``) stay separate rows.
    """
    if not rows:
        return [], []

    frame = pd.DataFrame(
        {
            "x": [row.get(x_key) for row in rows],
            "group": [series_key(row.get(group_key)) for row in rows],
            "value": [row.get(value_key) for row in rows],
        },
        dtype=object,
    )
    frame["kind"] = frame["x"].map(_value_kind)
    frame["x_id"] = frame.groupby(["kind", "x"], sort=False, dropna=False).ngroup()

    firsts = frame.drop_duplicates(subset="x_id")
    latest = frame.drop_duplicates(subset=["x_id", "group"], keep="last")

    by_x: Dict[int, Row] = {x_id: {x_key: x} for x_id, x in zip(firsts["x_id"], firsts["x"])}
    for x_id, group, value in zip(latest["x_id"], latest["group"], latest["value"]):
        by_x[x_id][group] = value

    series = [{"key": group, "label": group} for group in pd.unique(frame["group"])]
    return [by_x[x_id] for x_id in firsts["x_id"]], series


def unpivot_rows(
    rows: Iterable[Mapping[str, Any]],
    id_columns: Sequence[str],
    value_columns: Sequence[str],
    new_dimension_column: str = "Variable",
    new_measure_column: str = "Value",
) -> List[Row]:
    """Melt ``value_columns`` into dimension/measure pairs, row by row."""
    rows = list(rows)
    if not rows or not value_columns:
        return []

    frame = _frame(rows, [*id_columns, *value_columns])
    frame[_ROW_ORDER] = range(len(frame))
    melted = frame.melt(
        id_vars=[_ROW_ORDER, *id_columns],
        value_vars=list(value_columns),
        var_name=new_dimension_column,
        value_name=new_measure_column,
    )
    melted = melted.sort_values(_ROW_ORDER, kind="stable")
    return _records(melted[[*id_columns, new_dimension_column, new_measure_column]])


def apply_transformation(data: TabularData, transformer_output: DataTransformerOutput) -> TransformedData:
    """Apply the data transformer's recommendation; only unpivot is executable."""
    transformation = transformer_output.transformation

    if not transformer_output.needs_transformation or transformation is None or transformation.type == "none":
        return TransformedData(
            columns=list(data.columns),
            rows=[dict(row) for row in data.rows],
            transformation=TransformationOutcome(type="none", applied=False, details="No transformation needed"),
        )

    if transformation.type != "unpivot":
        logger.info("Transformation type '%s' is not supported, keeping original data", transformation.type)
        return TransformedData(
            columns=list(data.columns),
            rows=[dict(row) for row in data.rows],
            transformation=TransformationOutcome(
                type=transformation.type,
                applied=False,
                details=f"Transformation type '{transformation.type}' is not supported yet",
            ),
        )

    id_columns = transformation.id_columns or []
    value_columns = transformation.value_columns or []
    dimension = transformation.new_dimension_column or "Variable"
    measure = transformation.new_measure_column or "Value"

    if not value_columns:
        return TransformedData(
            columns=list(data.columns),
            rows=[dict(row) for row in data.rows],
            transformation=TransformationOutcome(
                type="unpivot", applied=False, details="Unpivot requested without value columns"
            ),
        )

    rows = unpivot_rows(data.rows, id_columns, value_columns, dimension, measure)
    details = (
        f"Unpivoted {len(value_columns)} columns into {dimension} and {measure}. "
        f"Original: {len(data.rows)} rows -> Transformed: {len(rows)} rows."
    )
    logger.info(details)
    return TransformedData(
        columns=[*id_columns, dimension, measure],
        rows=rows,
        transformation=TransformationOutcome(type="unpivot", applied=True, details=details),
    )


def apply_filters(rows: Sequence[Row], filters: Optional[Sequence[RecommendationFilter]]) -> List[Row]:
    """Apply "top N" / "last N" slices; other conditions are ignored."""
    result = list(rows)
    for item in filters or []:
        condition = (item.condition or "").lower()
        if "top" in condition:
            match = _TOP_N.search(condition)
            if match:
                result = result[: int(match.group(1))]
        elif "last" in condition:
            match = _LAST_N.search(condition)
            if match:
                count = int(match.group(1))
                result = result[-count:] if count else []
    return result


def _sort_key(values: pd.Series) -> pd.Series:
    present = values[values.notna()]
    if present.map(_is_number).all():
        return pd.to_numeric(values, errors="coerce")
    return values.map(lambda value: None if pd.isna(value) else str(value).casefold())


def sort_rows(rows: Sequence[Row], column: str, order: str = "ascending") -> List[Row]:
    """Stable sort on one column; missing values always go last.

    Numbers compare numerically when the whole column is numeric, otherwise
    values compare as case-insensitive text.
    """
    if not rows:
        return []
    frame = pd.DataFrame({"value": [row.get(column) for row in rows]}, dtype=object)
    ordered = frame.sort_values(
        "value",
        ascending=order != "descending",
        kind="stable",
        na_position="last",
        key=_sort_key,
    )
    return [rows[position] for position in ordered.index]


__all__ = [
    "TransformationOutcome",
    "TransformedData",
    "aggregate_values",
    "apply_filters",
    "apply_transformation",
    "group_and_aggregate",
    "numeric_series",
    "pivot_rows",
    "series_key",
    "sort_rows",
    "to_number",
    "unpivot_rows",
]
