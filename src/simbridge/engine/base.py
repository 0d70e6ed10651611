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

"""Engine primitives: error type, parameter reader and space objects."""

from typing import Dict, Optional, Sequence, Set, Union

import numpy as np


class EngineError(Exception):
    """Raised by spaces and methods. The bridge translates it at the boundary."""


class ParamReader:
    """
    Parses ``name=value`` strings and tracks which ones were consumed.

    Later duplicates overwrite earlier ones. :meth:`check_unused` rejects
    names nobody asked for.
    """

    def __init__(self, items: Optional[Sequence[str]] = None):
        self._values: Dict[str, str] = {}
        self._used: Set[str] = set()
        for item in items or ():
            name, sep, value = item.partition("=")
            name = name.strip()
            if not sep or not name:
                raise EngineError(f"Malformed parameter {item!r}, expected name=value")
            self._values[name] = value.strip()

    def has(self, name: str) -> bool:
        return name in self._values

    def get_str(self, name: str, default: Optional[str] = None) -> Optional[str]:
        self._used.add(name)
        return self._values.get(name, default)

    def get_int(self, name: str, default: int) -> int:
        raw = self.get_str(name)
        if raw is None:
            return default
        try:
            return int(float(raw)) if "." in raw else int(raw)
        except ValueError:
            raise EngineError(f"Parameter {name} expects an integer, got {raw!r}") from None

    def get_float(self, name: str, default: float) -> float:
        raw = self.get_str(name)
        if raw is None:
            return default
        try:
            return float(raw)
        except ValueError:
            raise EngineError(f"Parameter {name} expects a number, got {raw!r}") from None

    def check_unused(self) -> None:
        unused = sorted(set(self._values) - self._used)
        if unused:
            raise EngineError(f"Unknown parameter(s): {', '.join(unused)}")


ObjectData = Union[np.ndarray, bytes, memoryview]


class SpaceObject:
    """An engine-native record: integer id plus its payload."""

    __slots__ = ("id", "_data")

    def __init__(self, object_id: int, data: ObjectData):
        self.id = int(object_id)
        self._data = data

    @property
    def data(self) -> ObjectData:
        return self._data

    @property
    def nbytes(self) -> int:
        data = self.data
        if isinstance(data, np.ndarray):
            return data.nbytes
        return len(data)

    def tobytes(self) -> bytes:
        data = self.data
        if isinstance(data, np.ndarray):
            return data.tobytes()
        return bytes(data)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id}, nbytes={self.nbytes})"


class OwnedObject(SpaceObject):
    """Record holding a private, read-only copy of its payload."""

    __slots__ = ()

    def __init__(self, object_id: int, data: ObjectData):
        if isinstance(data, np.ndarray):
            data = np.array(data, copy=True)
            data.flags.writeable = False
        else:
            data = bytes(data)
        super().__init__(object_id, data)


class BorrowedObject(SpaceObject):
    """
    Record viewing caller-owned memory for the duration of one call.

    Use as a context manager; the payload is unreachable after release.
    """

    __slots__ = ()

    @property
    def data(self) -> ObjectData:
        if self._data is None:
            raise EngineError("Borrowed object used after its call returned")
        return self._data

    @property
    def released(self) -> bool:
        return self._data is None

    def release(self) -> None:
        self._data = None

    def __enter__(self) -> "BorrowedObject":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
