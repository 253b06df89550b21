"""Contains utilities to store objects more conveniently as JSON.

More specifically, this module introduces the `JsonizeEncoder`, which can be accessed via the `to_json` utility method.
This encoder allows to transform instances of any class to JSON by providing a `__json__` method in the class
implementation. This method does not take any (required) parameters and returns a JSON-izeable representation of the
current instance, e.g. a `dict` or a `list`.

Sadly (or luckily?), the inverse conversion does not work because JSON does not store any type information. Catalogs and
queries are read back through their dedicated loaders instead.
"""

from __future__ import annotations

import datetime
import enum
import json
from pathlib import Path
from typing import Any

jsondict = dict
"""Type alias for a JSON-izeable dictionary."""


class JsonizeEncoder(json.JSONEncoder):
    """The JsonizeEncoder allows to transform instances of any class to JSON.

    This can be achieved by providing a `__json__` method in the class implementation. This method does not take any
    (required) parameters and returns a JSON-izeable representation of the current instance, e.g. a `dict` or a `list`.
    Dates are written in ISO format, which is also the format the catalog loader accepts for partition boundaries.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, enum.Enum):
            return obj.value
        elif isinstance(obj, (set, frozenset)):
            return sorted(obj, key=str)
        elif isinstance(obj, (datetime.date, datetime.datetime)):
            return obj.isoformat()
        elif isinstance(obj, Path):
            return str(obj)
        elif "__json__" in dir(obj):
            return obj.__json__()
        return json.JSONEncoder.default(self, obj)


def to_json(obj: Any, *args, **kwargs) -> str | None:
    """Utility to transform any object to a JSON object, while making use of the `JsonizeEncoder`.

    All arguments other than the object itself are passed to the default Python `json.dumps` function.
    """
    if obj is None:
        return None
    kwargs.pop("cls", None)
    return json.dumps(obj, *args, cls=JsonizeEncoder, **kwargs)

