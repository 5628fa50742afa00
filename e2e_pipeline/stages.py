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


"""Declarative stage descriptors and the artifact catalog."""

from __future__ import annotations

from pathlib import Path
from string import Formatter
from typing import Annotated, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from e2e_pipeline.artifacts import Artifact
from e2e_pipeline.cluster import StopMode
from e2e_pipeline.constants import (
    DEFAULT_DATABASE,
    DEFAULT_REMOTE_TEMPLATE,
    DEFAULT_STAGE_FILE,
    ENGINE_BINARY,
    KNOWN_GATES,
    TEMPLATE_VARS,
    load_stage_file,
)
from e2e_pipeline.errors import StageInvariantError


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ============================================================================
# Steps
# ============================================================================

def _template_fields(template: str) -> list[str]:
    """Replacement field names in a ``str.format`` template, nested specs included."""
    fields: list[str] = []
    for _, field, spec, _ in Formatter().parse(template):
        if field is None:
            continue
        fields.append(field)
        if spec:
            fields.extend(_template_fields(spec))
    return fields


class SltStep(_Frozen):
    """Run the assertion runner over a dataset glob.

    Attributes:
        files: Dataset glob, expanded by the runner itself.
        database: Database to connect to.
        report: JUnit report base name; the build profile is appended.
        extended: Use the extended query protocol.
    """

    kind: Literal["slt"]
    files: str
    database: str = DEFAULT_DATABASE
    report: str | None = None
    extended: bool = False


class WaitVersionStep(_Frozen):
    """Poll the storage version id until it exceeds ``threshold``."""

    kind: Literal["wait_version"]
    threshold: int
    interval: float = Field(default=5, gt=0)


class CtlStep(_Frozen):
    """Issue a destructive control command against the running cluster."""

    kind: Literal["ctl"]
    args: tuple[str, ...] = Field(min_length=1)


class ExecStep(_Frozen):
    """Run a staged test binary; ``{placeholders}`` in args come from the run config."""

    kind: Literal["exec"]
    binary: str
    args: tuple[str, ...] = ()
    timeout: float | None = Field(default=None, gt=0)

    @field_validator("args")
    @classmethod
    def _check_placeholders(cls, args: tuple[str, ...]) -> tuple[str, ...]:
        for arg in args:
            try:
                fields = _template_fields(arg)
            except ValueError as err:
                raise ValueError(
                    f"argument {arg!r} is not a valid template ({err}); write literal braces as {{{{ and }}}}"
                ) from err
            unknown = [field for field in fields if field not in TEMPLATE_VARS]
            if unknown:
                raise ValueError(
                    f"argument {arg!r} uses unknown placeholders {unknown}; known: {', '.join(TEMPLATE_VARS)}"
                )
        return args


Step = Annotated[Union[SltStep, WaitVersionStep, CtlStep, ExecStep], Field(discriminator="kind")]


# ============================================================================
# Stages
# ============================================================================

class TestStage(_Frozen):
    """One ordered unit of the pipeline.

    Attributes:
        id: Unique stage identifier.
        title: Section marker text.
        cluster_profile: Cluster profile that must be active while steps run.
        artifacts: Logical artifact names staged before the cluster starts.
        steps: Steps run in order.
        gate: Feature gate enabling the stage, or None if always on.
        stop_mode: Teardown mode when the stage releases the cluster.
        clean_data: Wipe cluster data before starting.
        keep_cluster: Leave the cluster up after success for the next stage.
    """

    __test__: ClassVar[bool] = False

    id: str
    title: str
    cluster_profile: str
    artifacts: tuple[str, ...] = ()
    steps: tuple[Step, ...] = Field(min_length=1)
    gate: str | None = None
    stop_mode: StopMode = StopMode.GRACEFUL
    clean_data: bool = False
    keep_cluster: bool = False

    @model_validator(mode="after")
    def _check_steps(self) -> TestStage:
        polled = False
        for step in self.steps:
            if isinstance(step, WaitVersionStep):
                polled = True
            elif isinstance(step, CtlStep) and not polled:
                raise ValueError(f"stage '{self.id}': ctl step {list(step.args)} needs a preceding wait_version step")
            elif isinstance(step, ExecStep) and step.binary not in self.artifacts:
                raise ValueError(f"stage '{self.id}': exec binary '{step.binary}' is not in the stage artifacts")
        if polled and ENGINE_BINARY not in self.artifacts:
            raise ValueError(f"stage '{self.id}': control steps need the '{ENGINE_BINARY}' artifact")
        return self


class ArtifactEntry(_Frozen):
    """Catalog entry; the catalog key is the artifact's logical name."""

    remote: str = DEFAULT_REMOTE_TEMPLATE
    destination: str | None = None
    executable: bool = True
    rename: bool = True


class StagePlan(_Frozen):
    """The artifact catalog and the ordered stage list."""

    artifacts: dict[str, ArtifactEntry] = Field(default_factory=dict)
    stages: tuple[TestStage, ...]

    @model_validator(mode="after")
    def _check_references(self) -> StagePlan:
        seen: set[str] = set()
        for stage in self.stages:
            if stage.id in seen:
                raise ValueError(f"duplicate stage id '{stage.id}'")
            seen.add(stage.id)
            if stage.gate is not None and stage.gate not in KNOWN_GATES:
                raise ValueError(f"stage '{stage.id}' has unknown gate '{stage.gate}'")
            unknown = [name for name in stage.artifacts if name not in self.artifacts]
            if unknown:
                raise ValueError(f"stage '{stage.id}' references undeclared artifacts: {', '.join(unknown)}")
        return self

    def catalog(self) -> dict[str, Artifact]:
        """Artifact declarations keyed by logical name."""
        return {name: Artifact(name=name, **entry.model_dump()) for name, entry in self.artifacts.items()}


def load_stage_plan(path: Path = DEFAULT_STAGE_FILE) -> StagePlan:
    """Load and validate a stage descriptor file.

    Args:
        path: YAML stage descriptor file.

    Returns:
        The validated stage plan.

    Raises:
        StageInvariantError: If the file is missing or does not describe a valid plan.
    """
    try:
        data = load_stage_file(path)
    except FileNotFoundError as err:
        raise StageInvariantError(f"Stage file not found: {path}") from err
    try:
        return StagePlan.model_validate(data)
    except ValidationError as err:
        raise StageInvariantError(f"Invalid stage file {path}:\n{err}") from err
