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

"""e2e_pipeline - end-to-end test orchestration for query engine CI builds."""

from __future__ import annotations

import logging

from rich.console import Console

console = Console(stderr=True)
logger = logging.getLogger("e2e_pipeline")


def section(title: str) -> None:
    """Print a CI log section marker.

    Buildkite folds the log at every line starting with ``--- ``.

    Args:
        title: Human-readable phase name.
    """
    console.print(f"--- {title}", markup=False, highlight=False)
