"""Git storage for the journal, driven through the ``git`` executable.

Journal commits are built from a private index file inside the git directory
(``genie-journal.index``), never the user's own index, and land on a
dedicated ref via ``commit-tree`` + ``update-ref``. ``HEAD`` and the working
branch are left alone. Notes go to a fixed notes ref.

All calls are asyncio subprocesses so a slow git never blocks the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from genie_journal.models import Author

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger("genie_journal.repo")

_INDEX_NAME = "genie-journal.index"
DEFAULT_REF = "refs/heads/journal"
DEFAULT_NOTES_REF = "refs/notes/genie"


class StorageError(RuntimeError):
    """A git invocation failed (staging, committing or writing a note)."""


class GitRepo:
    """Async wrapper around the git plumbing used by the Journaler."""

    def __init__(
        self,
        root: Path | str,
        ref: str = DEFAULT_REF,
        notes_ref: str = DEFAULT_NOTES_REF,
        author: Author | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.ref = ref
        self.notes_ref = notes_ref
        self.author = author or Author()
        self._index_path: Path | None = None

    # ------------------------------------------------------------------
    # subprocess plumbing
    # ------------------------------------------------------------------

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        env.update({
            "GIT_AUTHOR_NAME": self.author.name,
            "GIT_AUTHOR_EMAIL": self.author.email,
            "GIT_COMMITTER_NAME": self.author.name,
            "GIT_COMMITTER_EMAIL": self.author.email,
        })
        if self._index_path is not None:
            env["GIT_INDEX_FILE"] = str(self._index_path)
        return env

    async def _run(
        self, *args: str, stdin: bytes | None = None, literal: bool = False,
    ) -> tuple[int, str, str]:
        # check-ignore rejects pathspec magic, so only add/rm ask for it.
        prefix = ("--literal-pathspecs",) if literal else ()
        try:
            proc = await asyncio.create_subprocess_exec(
                "git", *prefix, *args,
                cwd=self.root,
                env=self._env(),
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            msg = f"cannot run git in {self.root}: {exc}"
            raise StorageError(msg) from exc
        out, err = await proc.communicate(stdin)
        assert proc.returncode is not None
        return proc.returncode, out.decode(errors="replace"), err.decode(errors="replace")

    async def _git(self, *args: str, stdin: bytes | None = None, literal: bool = False) -> str:
        code, out, err = await self._run(*args, stdin=stdin, literal=literal)
        if code != 0:
            msg = f"git {args[0]} failed ({code}): {err.strip() or out.strip()}"
            raise StorageError(msg)
        return out

    async def resolve(self, rev: str) -> str | None:
        """Commit id for rev, or None if it does not exist."""
        code, out, _ = await self._run("rev-parse", "--verify", "-q", f"{rev}^{{commit}}")
        return out.strip() if code == 0 else None

    # ------------------------------------------------------------------
    # setup
    # ------------------------------------------------------------------

    async def ensure(self) -> None:
        """Check that root is inside a git work tree and locate the private index."""
        inside = (await self._git("rev-parse", "--is-inside-work-tree")).strip()
        if inside != "true":
            msg = f"{self.root} is not inside a git work tree"
            raise StorageError(msg)
        git_path = (await self._git("rev-parse", "--git-path", _INDEX_NAME)).strip()
        self._index_path = (self.root / git_path).resolve()

    async def _prepare_index(self) -> None:
        if self._index_path is None:
            await self.ensure()
        assert self._index_path is not None
        if self._index_path.exists():
            return
        base = await self.resolve(self.ref) or await self.resolve("HEAD")
        if base:
            await self._git("read-tree", base)
        else:
            await self._git("read-tree", "--empty")
        logger.debug("private index seeded from %s", base or "empty tree")

    # ------------------------------------------------------------------
    # journal operations
    # ------------------------------------------------------------------

    async def stage(self, paths: Iterable[str]) -> list[str]:
        """Stage additions, modifications and deletions for root-relative paths.

        Paths excluded by .gitignore are skipped. Returns the paths handed to git.
        """
        await self._prepare_index()
        paths = sorted(set(paths))
        if not paths:
            return []
        present = [p for p in paths if (self.root / p).exists() or (self.root / p).is_symlink()]
        missing = sorted(set(paths) - set(present))

        if present:
            code, out, err = await self._run("check-ignore", "--stdin", "-z", stdin=_nul(present))
            if code not in (0, 1):
                msg = f"git check-ignore failed ({code}): {err.strip()}"
                raise StorageError(msg)
            ignored = {p for p in out.split("\0") if p}
            if ignored:
                logger.debug("skipping ignored paths: %s", sorted(ignored))
                present = [p for p in present if p not in ignored]
        if present:
            await self._git(
                "add", "--all", "--pathspec-from-file=-", "--pathspec-file-nul",
                stdin=_nul(present), literal=True,
            )
        if missing:
            await self._git(
                "rm", "--cached", "--ignore-unmatch", "-q", "-r",
                "--pathspec-from-file=-", "--pathspec-file-nul",
                stdin=_nul(missing), literal=True,
            )
        return present + missing

    async def commit(self, message: str) -> str:
        """Commit the private index onto ``self.ref``; returns the new commit id."""
        await self._prepare_index()
        tree = (await self._git("write-tree")).strip()
        parent_on_ref = await self.resolve(self.ref)
        parent = parent_on_ref or await self.resolve("HEAD")
        args = ["commit-tree", tree]
        if parent:
            args += ["-p", parent]
        sha = (await self._git(*args, stdin=message.encode())).strip()
        await self._git(
            "update-ref", "-m", "genie-journal: snapshot",
            self.ref, sha, parent_on_ref or "",
        )
        return sha

    async def add_note(self, sha: str, text: str) -> None:
        """Attach (or overwrite) the note for ``sha`` on the notes ref."""
        await self._git("notes", "--ref", self.notes_ref, "add", "-f", "-F", "-", sha, stdin=text.encode())

    # ------------------------------------------------------------------
    # inspection
    # ------------------------------------------------------------------

    async def read_note(self, sha: str) -> str | None:
        code, out, _ = await self._run("notes", "--ref", self.notes_ref, "show", sha)
        return out if code == 0 else None

    async def log(self, limit: int | None = None) -> list[tuple[str, str]]:
        """(sha, subject) pairs on the journal ref, newest first."""
        if await self.resolve(self.ref) is None:
            return []
        args = ["log", "--format=%H%x00%s", self.ref]
        if limit is not None:
            args.insert(1, f"-{limit}")
        out = await self._git(*args)
        return [tuple(line.split("\0", 1)) for line in out.splitlines() if line]  # type: ignore[misc]

    async def changed_paths(self, sha: str) -> list[str]:
        out = await self._git("diff-tree", "--no-commit-id", "--name-only", "-r", "-z", "--root", sha)
        return [p for p in out.split("\0") if p]


def _nul(paths: Iterable[str]) -> bytes:
    return b"".join(p.encode() + b"\0" for p in paths)
