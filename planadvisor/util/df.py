"""Utilities to work with Pandas data frames"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from typing import Any, Optional

import pandas as pd


def as_df(data: Collection[dict[str, Any]], *, columns: Optional[Iterable[str]] = None) -> pd.DataFrame:
    """Generates a new Pandas `DataFrame` from a collection of records.

    Each dictionary corresponds to one row of the data frame and each key becomes a column. By default, the columns are
    inferred from the first record, all other records have to provide at least the same keys. If `columns` is given, only
    these columns are included (in the given order).

    An empty collection produces an empty data frame, which still carries the requested `columns` if any were given.
    """
    columns = list(columns) if columns is not None else None
    if not data:
        return pd.DataFrame(columns=columns) if columns else pd.DataFrame()

    if columns is None:
        columns = list(next(iter(data)).keys())
    df_container: dict[str, list[Any]] = {col: [] for col in columns}
    for row in data:
        for col in columns:
            df_container[col].append(row[col])
    return pd.DataFrame(df_container)
