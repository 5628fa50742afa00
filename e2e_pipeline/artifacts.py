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


"""Build artifact download, canonical renaming, and permission staging."""

from __future__ import annotations

import stat
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from e2e_pipeline import console, logger
from e2e_pipeline.constants import ARTIFACT_AGENT, DEFAULT_REMOTE_TEMPLATE
from e2e_pipeline.errors import ArtifactMissing, ArtifactStagingFailure, CommandFailed, StageInvariantError
from e2e_pipeline.utils import CommandRunner


@dataclass(frozen=True)
class Artifact:
    """A build artifact a stage needs staged locally.

    Attributes:
        name: Logical name, also the canonical local file name.
        remote: Remote object name template; ``{name}`` and ``{profile}`` are expanded.
        destination: Staging directory relative to the workdir, or None for the artifact dir.
        executable: Whether to grant execute permission after staging.
        rename: Whether the downloaded object is renamed to ``name``. Glob
            artifacts keep their remote layout.
    """

    name: str
    remote: str = DEFAULT_REMOTE_TEMPLATE
    destination: str | None = None
    executable: bool = True
    rename: bool = True

    def remote_name(self, profile: str) -> str:
        """Resolve the profile-qualified remote object name."""
        return self.remote.format(name=self.name, profile=profile)


class BuildkiteArtifactStore:
    """Artifact store backed by ``buildkite-agent artifact download``."""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def download(self, remote: str, dest_dir: Path) -> None:
        """Download a remote object (or glob) into ``dest_dir``.

        Raises:
            ArtifactMissing: If the agent cannot find or fetch the object.
        """
        try:
            self.runner.stream(ARTIFACT_AGENT, "artifact", "download", remote, f"{dest_dir}/")
        except CommandFailed as err:
            raise ArtifactMissing(f"Artifact '{remote}' could not be downloaded: {err}") from err


class ArtifactProvisioner:
    """Fetches artifacts for a build profile into the local staging area.

    Args:
        store: Object with a ``download(remote, dest_dir)`` method.
        catalog: Artifact declarations keyed by logical name.
        workdir: Directory relative destinations resolve against.
        artifact_dir: Default staging directory.
    """

    def __init__(
        self,
        store: BuildkiteArtifactStore,
        catalog: Mapping[str, Artifact],
        workdir: Path,
        artifact_dir: Path,
    ) -> None:
        self.store = store
        self.catalog = dict(catalog)
        self.workdir = workdir
        self.artifact_dir = artifact_dir
        self._staged: dict[str, Path] = {}

    def _lookup(self, name: str) -> Artifact:
        try:
            return self.catalog[name]
        except KeyError:
            raise StageInvariantError(f"Artifact '{name}' is not declared in the artifact catalog") from None

    def _dest_dir(self, artifact: Artifact) -> Path:
        if artifact.destination is None:
            return self.artifact_dir
        return self.workdir / artifact.destination

    def staged(self, name: str) -> bool:
        """Whether ``name`` has been staged during this run."""
        return name in self._staged

    def path(self, name: str) -> Path:
        """Staged location of an artifact.

        Raises:
            StageInvariantError: If the artifact has not been staged.
        """
        try:
            return self._staged[name]
        except KeyError:
            raise StageInvariantError(f"Artifact '{name}' used before it was staged") from None

    def _place(self, artifact: Artifact, dest_dir: Path, remote: str) -> Path:
        staged = dest_dir
        if artifact.rename:
            downloaded = dest_dir / remote
            if not downloaded.is_file():
                raise ArtifactMissing(f"Artifact '{remote}' not found in {dest_dir} after download")
            staged = dest_dir / artifact.name
            downloaded.replace(staged)
        if artifact.executable:
            staged.chmod(staged.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return staged

    def fetch(self, profile: str, names: Iterable[str]) -> list[Path]:
        """Download, rename, and chmod each artifact, overwriting earlier copies.

        Args:
            profile: Build profile qualifying the remote names.
            names: Logical artifact names.

        Returns:
            Staged paths, in the order of ``names``.

        Raises:
            ArtifactMissing: If an object does not exist in the store.
            ArtifactStagingFailure: If the staging area cannot be written.
        """
        paths: list[Path] = []
        for name in names:
            artifact = self._lookup(name)
            dest_dir = self._dest_dir(artifact)
            remote = artifact.remote_name(profile)
            try:
                dest_dir.mkdir(parents=True, exist_ok=True)
            except OSError as err:
                raise ArtifactStagingFailure(f"Cannot create staging directory {dest_dir}: {err}") from err

            logger.info("Downloading %s into %s", remote, dest_dir)
            self.store.download(remote, dest_dir)

            try:
                staged = self._place(artifact, dest_dir, remote)
            except OSError as err:
                raise ArtifactStagingFailure(f"Cannot stage artifact '{name}' in {dest_dir}: {err}") from err

            self._staged[name] = staged
            paths.append(staged)
            console.print(f"[green]\u2713 {name} ({remote})[/green]")
        return paths

    def ensure(self, profile: str, names: Iterable[str]) -> list[Path]:
        """Fetch only the artifacts not yet staged in this run.

        Returns:
            Staged paths for all of ``names``.
        """
        names = list(names)
        missing = [name for name in names if name not in self._staged]
        if missing:
            self.fetch(profile, missing)
        return [self._staged[name] for name in names]
