# /*
# Copyright 2026 The Grove Authors.
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
# */


"""Feature gates for optional stage blocks."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType


class FeatureGate:
    """Boolean flags captured once at the start of a run.

    Args:
        flags: Flag values keyed by gate name.
    """

    def __init__(self, flags: Mapping[str, bool]) -> None:
        self._flags = MappingProxyType(dict(flags))

    @property
    def flags(self) -> Mapping[str, bool]:
        return self._flags

    def enabled(self, name: str | None) -> bool:
        """Whether the block behind gate ``name`` runs. Ungated blocks always run.

        Raises:
            KeyError: If ``name`` is not a known gate.
        """
        if name is None:
            return True
        if name not in self._flags:
            raise KeyError(f"Unknown feature gate '{name}'; known gates: {', '.join(sorted(self._flags))}")
        return self._flags[name]
