# Copyright 2025 Sushanth (https://github.com/sushanthpy)
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Parameter Set

An ordered list of ``"name=value"`` strings handed to the engine as one unit
when configuring a space, a method or query-time behaviour.

Example:
    >>> params = ParamSet.create()
    >>> params.add("M", ParamType.INT, 16)
    >>> params.add("efConstruction", ParamType.INT, 200)
    >>> params.as_list()
    ['M=16', 'efConstruction=200']
    >>> params.free()
"""

from enum import IntEnum
from typing import Any, Iterator, List, Mapping, Optional

from .allocator import Allocator, ForeignBuffer, default_allocator
from .error_channel import boundary
from .errors import InvalidArgumentError, NullPointerError


class ParamType(IntEnum):
    """Textual conversion applied to a parameter value."""
    INT = 0
    DOUBLE = 1
    STRING = 2


def format_value(type_tag: ParamType, value: Any) -> str:
    try:
        type_tag = ParamType(type_tag)
    except ValueError:
        raise InvalidArgumentError(f"Invalid parameter type: {type_tag!r}") from None

    if type_tag == ParamType.INT:
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidArgumentError(f"INT parameter needs an int, got {type(value).__name__}")
        return str(value)
    if type_tag == ParamType.DOUBLE:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidArgumentError(f"DOUBLE parameter needs a number, got {type(value).__name__}")
        # Fixed six-decimal notation
        return f"{float(value):f}"
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if not isinstance(value, str):
        raise InvalidArgumentError(f"STRING parameter needs str, got {type(value).__name__}")
    return value


class ParamSet:
    """
    Ordered ``name=value`` parameters whose storage is owned by an allocator.

    Order is preserved and duplicates are passed through unmodified; which
    one wins is up to the engine. Names are not validated here.
    """

    def __init__(self, allocator: Optional[Allocator] = None):
        self._allocator = allocator or default_allocator()
        self._entries: Optional[List[ForeignBuffer]] = []

    @classmethod
    @boundary("Parameters created successfully")
    def create(cls, allocator: Optional[Allocator] = None) -> "ParamSet":
        return cls(allocator)

    @classmethod
    def from_dict(cls, values: Mapping[str, Any], allocator: Optional[Allocator] = None) -> "ParamSet":
        """Build a set from a mapping, inferring each value's type tag."""
        params = cls(allocator)
        for name, value in values.items():
            if isinstance(value, bool):
                params.add(name, ParamType.INT, int(value))
            elif isinstance(value, int):
                params.add(name, ParamType.INT, value)
            elif isinstance(value, float):
                params.add(name, ParamType.DOUBLE, value)
            else:
                params.add(name, ParamType.STRING, value)
        return params

    def _live_entries(self) -> List[ForeignBuffer]:
        if self._entries is None:
            raise NullPointerError("parameter set has been freed")
        return self._entries

    @boundary("Parameter added successfully")
    def add(self, name: str, type_tag: ParamType, value: Any) -> None:
        """Format ``name=value`` for ``type_tag`` and append it."""
        entries = self._live_entries()
        if not name:
            raise InvalidArgumentError("parameter name must be non-empty")
        if value is None:
            raise InvalidArgumentError(f"parameter {name!r} has no value")
        entries.append(self._allocator.dup_string(f"{name}={format_value(type_tag, value)}"))

    def as_list(self) -> List[str]:
        return [entry.text() for entry in self._live_entries()]

    def free(self) -> None:
        """Release the backing storage. The set is unusable afterwards."""
        entries = self._live_entries()
        self._entries = None
        for entry in entries:
            entry.free()

    @property
    def freed(self) -> bool:
        return self._entries is None

    def __enter__(self) -> "ParamSet":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._entries is not None:
            self.free()

    def __iter__(self) -> Iterator[str]:
        return iter(self.as_list())

    def __len__(self) -> int:
        return len(self._live_entries())

    def __repr__(self) -> str:
        if self._entries is None:
            return "ParamSet(<freed>)"
        return f"ParamSet({self.as_list()!r})"
