# -*- encoding: utf-8 -*-
"""
query.py - Filter, sort and limit over a full table scan.

The pipeline always runs in this order, skipping absent stages:

    1. full scan (read-only transaction)
    2. where     - keep records the predicate accepts
    3. order_by  - stable sort by numeric difference on one field
    4. limit     - keep the first `limit` records

Sort order is defined only for numeric field values. Values that cannot be
subtracted (missing field, None, strings, NaN) compare equal to everything,
so their position relative to other records is undefined.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from . import ui_log
from .connection import Database
from .errors import QueryError, describe
from .records import Predicate, Record, check_callable, scan


class SortDirection(Enum):
    ASC = "ASC"
    DESC = "DESC"


@dataclass(frozen=True)
class OrderBy:
    field: str
    direction: SortDirection = SortDirection.ASC

    @classmethod
    def parse(cls, text: str) -> "OrderBy":
        """Parse "field", "field ASC" or "field DESC" (direction case-insensitive)."""
        parts = text.split()
        if not parts or len(parts) > 2:
            raise ValueError(f"Invalid order_by: {text!r}")
        if len(parts) == 1:
            return cls(parts[0])
        try:
            direction = SortDirection(parts[1].upper())
        except ValueError:
            raise ValueError(f"Invalid sort direction in order_by: {text!r}") from None
        return cls(parts[0], direction)


@dataclass
class QueryOptions:
    """
    Query clauses; each one is optional.

    Attributes:
        where: predicate over a record
        order_by: OrderBy or "field [ASC|DESC]"
        limit: maximum number of records returned (non-negative)
    """

    where: Optional[Predicate] = None
    order_by: Optional[Union[OrderBy, str]] = None
    limit: Optional[int] = None

    def __post_init__(self):
        if self.where is not None:
            check_callable(self.where, "where")
        if isinstance(self.order_by, str):
            self.order_by = OrderBy.parse(self.order_by)
        elif self.order_by is not None and not isinstance(self.order_by, OrderBy):
            raise TypeError(f"order_by must be OrderBy or str, got {type(self.order_by).__name__}")
        if self.limit is not None:
            if isinstance(self.limit, bool) or not isinstance(self.limit, int):
                raise TypeError(f"limit must be an int, got {type(self.limit).__name__}")
            if self.limit < 0:
                raise ValueError(f"limit must be non-negative, got {self.limit}")


def _difference(a: Record, b: Record, field: str) -> int:
    """Sign of a[field] - b[field]; 0 when either side has no comparable number."""
    try:
        diff = a.get(field) - b.get(field)
    except (TypeError, AttributeError):
        return 0
    if diff != diff:
        return 0
    return (diff > 0) - (diff < 0)


def sort_records(records: list[Record], order_by: OrderBy) -> list[Record]:
    """Stable sort by numeric difference on order_by.field."""
    field = order_by.field
    if order_by.direction is SortDirection.DESC:
        compare: Callable = lambda a, b: _difference(b, a, field)
    else:
        compare = lambda a, b: _difference(a, b, field)
    return sorted(records, key=functools.cmp_to_key(compare))


async def query(
    db: Database, table: str, options: Optional[QueryOptions] = None
) -> list[Record]:
    """
    Scan `table` and apply options.

    Raises:
        QueryError: scan failed or the where predicate raised
    """
    options = QueryOptions() if options is None else options
    if not isinstance(options, QueryOptions):
        raise TypeError(f"options must be QueryOptions, got {type(options).__name__}")
    try:
        records = await scan(db, table)
        if options.where is not None:
            records = [record for record in records if options.where(record)]
    except Exception as e:
        ui_log.emit(f"{table}: {describe(e)}", "fail", op="query")
        raise QueryError(f"Query on '{table}' failed: {describe(e)}") from e
    if options.order_by is not None:
        records = sort_records(records, options.order_by)
    if options.limit is not None:
        records = records[: options.limit]
    ui_log.emit(f"{table}: {len(records)} records", "debug", op="query")
    return records
