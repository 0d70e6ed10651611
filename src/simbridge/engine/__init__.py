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
Similarity-search engine driven by the bridge.

The bridge only reaches it through the functions below plus the
:class:`~simbridge.engine.spaces.Space` and
:class:`~simbridge.engine.methods.Method` interfaces.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..types import DataEncoding, DistanceKind
from .base import BorrowedObject, EngineError, OwnedObject, ParamReader, SpaceObject
from .methods import METHODS, Method, read_topology_descriptor
from .queue import ResultQueue
from .spaces import SPACES, Space


@dataclass(frozen=True)
class SpaceInfo:
    """Static registration of a space: its canonical kind and encoding."""
    name: str
    distance_kind: DistanceKind
    encoding: DataEncoding


SPACE_REGISTRY: Dict[str, SpaceInfo] = {
    name: SpaceInfo(name, cls.distance_kind, cls.encoding) for name, cls in SPACES.items()
}


def lookup_space(name: str) -> Optional[SpaceInfo]:
    return SPACE_REGISTRY.get(name)


def create_space(name: str, params: Optional[Sequence[str]] = None) -> Space:
    cls = SPACES.get(name)
    if cls is None:
        raise EngineError(f"Unknown space: {name}")
    return cls(params)


def create_method(
    name: str,
    space: Space,
    objects: List[SpaceObject],
    print_progress: bool = False,
) -> Method:
    cls = METHODS.get(name)
    if cls is None:
        raise EngineError(f"Unknown method: {name}")
    return cls(space, objects, print_progress)


def method_names() -> List[str]:
    return sorted(METHODS)


__all__ = [
    "BorrowedObject",
    "EngineError",
    "Method",
    "OwnedObject",
    "ParamReader",
    "ResultQueue",
    "SPACE_REGISTRY",
    "Space",
    "SpaceInfo",
    "SpaceObject",
    "create_method",
    "create_space",
    "lookup_space",
    "method_names",
    "read_topology_descriptor",
]
