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
Bridge configuration.

Defaults come from the environment:

    SIMBRIDGE_EF_SEARCH          default search breadth for methods that take
                                 ``efSearch`` (200)
    SIMBRIDGE_THREAD_POOL_SIZE   workers for batch queries (CPU count)
    SIMBRIDGE_STRICT_LAYOUT      "1"/"true": reject wrong-dtype or
                                 non-contiguous batch arrays instead of
                                 copying them
"""

import os
import threading
import warnings
from dataclasses import dataclass, field
from typing import Optional

from .errors import InvalidArgumentError

MIN_THREAD_POOL_SIZE = 1
MAX_THREAD_POOL_SIZE = 1024
DEFAULT_EF_SEARCH = 200


class PerformanceWarning(UserWarning):
    """Warning for performance-degrading conditions."""
    pass


def _cpu_count() -> int:
    return max(MIN_THREAD_POOL_SIZE, min(os.cpu_count() or 1, MAX_THREAD_POOL_SIZE))


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip() in ("1", "true", "True", "yes")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidArgumentError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class BridgeConfig:
    """
    Process-wide bridge defaults.

    Attributes:
        ef_search: Search breadth applied to methods accepting ``efSearch``
            unless the caller has set query-time parameters.
        thread_pool_size: Initial worker count for new indexes.
        strict_layout: Raise instead of copying badly laid out arrays.
    """
    ef_search: int = DEFAULT_EF_SEARCH
    thread_pool_size: int = field(default_factory=_cpu_count)
    strict_layout: bool = False

    def validate(self) -> "BridgeConfig":
        if self.ef_search < 1:
            raise InvalidArgumentError(f"ef_search must be >= 1, got {self.ef_search}")
        validate_thread_pool_size(self.thread_pool_size)
        return self

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        return cls(
            ef_search=_env_int("SIMBRIDGE_EF_SEARCH", DEFAULT_EF_SEARCH),
            thread_pool_size=_env_int("SIMBRIDGE_THREAD_POOL_SIZE", _cpu_count()),
            strict_layout=_env_flag("SIMBRIDGE_STRICT_LAYOUT"),
        ).validate()


def validate_thread_pool_size(size: int) -> int:
    if isinstance(size, bool) or not isinstance(size, int):
        raise InvalidArgumentError(f"thread pool size must be an int, got {type(size).__name__}")
    if not MIN_THREAD_POOL_SIZE <= size <= MAX_THREAD_POOL_SIZE:
        raise InvalidArgumentError(
            f"thread pool size must be in [{MIN_THREAD_POOL_SIZE}, {MAX_THREAD_POOL_SIZE}], got {size}"
        )
    return size


_config: Optional[BridgeConfig] = None
_config_lock = threading.Lock()


def get_config() -> BridgeConfig:
    """Return the process default, reading the environment on first use."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = BridgeConfig.from_env()
    return _config


def set_config(config: Optional[BridgeConfig]) -> None:
    """Replace the process default. ``None`` re-reads the environment lazily."""
    global _config
    with _config_lock:
        _config = config.validate() if config is not None else None


def warn_copy(what: str, stacklevel: int = 3) -> None:
    warnings.warn(
        f"{what} was copied to match the required layout. "
        "Pass C-contiguous arrays of the expected dtype to avoid the copy.",
        PerformanceWarning,
        stacklevel=stacklevel,
    )
