"""Source tree resolution for GitHub repositories.

A commit is fetched shallowly into a temporary directory with the git CLI.
The ``.git`` directory is dropped so the tree holds only the commit's files.
"""

from __future__ import annotations

import asyncio
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from loguru import logger

from hookrelay.exceptions import ResolveError


GITHUB_URL = "https://github.com/"
_FULL_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


def clone_url(full_name: str) -> str:
    """Canonical clone URL for an ``owner/name`` repository."""
    return GITHUB_URL + full_name


def mount_name(full_name: str) -> str:
    """Last path segment of ``full_name``, used as the mount directory."""
    return full_name.rsplit("/", 1)[-1]


@dataclass
class SourceTree:
    """Snapshot of a repository at one commit.

    Attributes:
        full_name: Repository identifier in ``owner/name`` form.
        commit: Commit the tree was checked out at.
        path: Host directory holding the files.
    """

    full_name: str
    commit: str
    path: Path

    @property
    def mount_name(self) -> str:
        return mount_name(self.full_name)

    async def cleanup(self) -> None:
        """Remove the snapshot from the host."""
        await asyncio.to_thread(shutil.rmtree, self.path, True)
        logger.debug("Source tree removed", path=str(self.path))


class SourceResolver(Protocol):
    """Produces source trees for a repository commit."""

    async def resolve(self, full_name: str, commit: str) -> SourceTree:
        """Fetch ``commit`` of ``full_name``.

        Raises:
            ResolveError: If the repository or commit cannot be fetched.
        """
        ...


class GitSourceResolver(SourceResolver):
    """Fetches commits from GitHub with the git CLI.

    Args:
        workspace: Parent directory for snapshots (system temp by default).
    """

    def __init__(self, workspace: Path | None = None) -> None:
        self.workspace = workspace

    async def resolve(self, full_name: str, commit: str) -> SourceTree:
        """Shallow-fetch ``commit`` and check it out into a fresh directory."""
        if not _FULL_NAME_RE.match(full_name) or full_name.split("/")[-1] in {".", ".."}:
            raise ResolveError(full_name, commit, "repository must be in 'owner/name' form")
        if not commit:
            raise ResolveError(full_name, commit, "commit reference is empty")

        path = Path(tempfile.mkdtemp(prefix="hookrelay-src-", dir=self.workspace))
        tree = SourceTree(full_name=full_name, commit=commit, path=path)
        url = clone_url(full_name)
        logger.info("Resolving source tree", repository=full_name, commit=commit)
        try:
            await self._git(tree, "init", "--quiet")
            await self._git(tree, "fetch", "--quiet", "--depth", "1", url, commit)
            await self._git(tree, "checkout", "--quiet", "--detach", "FETCH_HEAD")
            await asyncio.to_thread(shutil.rmtree, path / ".git")
        except BaseException:
            await tree.cleanup()
            raise
        return tree

    async def _git(self, tree: SourceTree, *args: str) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                "git", *args,
                cwd=tree.path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
            )
        except OSError as exc:
            raise ResolveError(tree.full_name, tree.commit, f"failed to run git: {exc}") from exc
        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise ResolveError(
                tree.full_name,
                tree.commit,
                f"git {args[0]} failed: {stderr.decode().strip()}",
            )

