# -*- encoding: utf-8 -*-
"""
aggregate.py - Single-pass numeric reductions over a full table scan.

    SUM    sum of record[field]; missing or None counts as 0
    AVG    SUM / number of records; nan for an empty table
    COUNT  number of records; field is ignored
    MAX    maximum; missing counts as -inf (empty or all-missing -> -inf)
    MIN    minimum; missing counts as +inf (empty or all-missing -> +inf)
"""

from __future__ import annotations

import math
import numbers
from enum import Enum
from typing import Any, Union

from . import ui_log
from .connection import Database
from .errors import AggregateError, InvalidOperationError, describe
from .records import Record, scan


class AggregateOp(Enum):
    SUM = "SUM"
    AVG = "AVG"
    COUNT = "COUNT"
    MAX = "MAX"
    MIN = "MIN"


def resolve_op(operation: Union[AggregateOp, str]) -> AggregateOp:
    if isinstance(operation, AggregateOp):
        return operation
    try:
        return AggregateOp(operation)
    except ValueError:
        raise InvalidOperationError(
            f"Unknown aggregate operation {operation!r}; expected one of "
            + ", ".join(op.value for op in AggregateOp)
        ) from None


def _value(record: Record, field: str, missing: float) -> Any:
    value = record.get(field)
    if value is None:
        return missing
    if isinstance(value, numbers.Real):
        return value
    raise TypeError(f"field '{field}' holds non-numeric value {value!r}")


def reduce_records(records: list[Record], op: AggregateOp, field: str) -> Union[int, float]:
    if op is AggregateOp.COUNT:
        return len(records)
    if op is AggregateOp.MAX:
        return max((_value(r, field, -math.inf) for r in records), default=-math.inf)
    if op is AggregateOp.MIN:
        return min((_value(r, field, math.inf) for r in records), default=math.inf)
    total = sum(_value(r, field, 0) for r in records)
    if op is AggregateOp.AVG:
        return total / len(records) if records else math.nan
    return total


async def aggregate(
    db: Database, table: str, operation: Union[AggregateOp, str], field: str
) -> Union[int, float]:
    """
    Reduce `field` across every record of `table`.

    Raises:
        InvalidOperationError: unknown operation; the table is not touched
        AggregateError: scan failed or a present value is not numeric
    """
    op = resolve_op(operation)
    try:
        records = await scan(db, table)
        result = reduce_records(records, op, field)
    except Exception as e:
        ui_log.emit(f"{op.value}({table}.{field}): {describe(e)}", "fail", op="aggregate")
        raise AggregateError(
            f"{op.value} of '{field}' over '{table}' failed: {describe(e)}"
        ) from e
    ui_log.emit(f"{op.value}({table}.{field}) = {result!r}", "debug", op="aggregate")
    return result
