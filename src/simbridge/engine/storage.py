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
Binary record-vector files.

Layout (little-endian)::

    magic   4 bytes  b"SBOV"
    version uint32
    count   uint64
    count x { id: int32, length: uint32, payload: length bytes }
"""

import struct
from typing import BinaryIO, Iterable, Iterator, List, Tuple

from .base import EngineError

MAGIC = b"SBOV"
VERSION = 1

_HEADER = struct.Struct("<4sIQ")
_RECORD = struct.Struct("<iI")


def write_objects(path: str, records: Iterable[Tuple[int, bytes]], count: int) -> None:
    with open(path, "wb") as f:
        f.write(_HEADER.pack(MAGIC, VERSION, count))
        written = 0
        for object_id, payload in records:
            f.write(_RECORD.pack(object_id, len(payload)))
            f.write(payload)
            written += 1
        if written != count:
            raise EngineError(f"Expected to write {count} records, wrote {written}")


def _read_exact(f: BinaryIO, size: int, path: str) -> bytes:
    data = f.read(size)
    if len(data) != size:
        raise EngineError(f"Truncated record file {path}")
    return data


def iter_objects(f: BinaryIO, path: str) -> Iterator[Tuple[int, bytes]]:
    magic, version, count = _HEADER.unpack(_read_exact(f, _HEADER.size, path))
    if magic != MAGIC:
        raise EngineError(f"{path} is not a record file (bad magic {magic!r})")
    if version != VERSION:
        raise EngineError(f"Unsupported record file version {version} in {path}")
    for _ in range(count):
        object_id, length = _RECORD.unpack(_read_exact(f, _RECORD.size, path))
        yield object_id, _read_exact(f, length, path)


def read_objects(path: str) -> List[Tuple[int, bytes]]:
    try:
        with open(path, "rb") as f:
            return list(iter_objects(f, path))
    except struct.error as exc:
        raise EngineError(f"Corrupt record file {path}: {exc}") from None
