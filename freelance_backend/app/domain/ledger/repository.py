"""
Git Ledger Repository.

Append-only store of locked report payloads, backed by a local git
repository. Each lock writes `reports/<report_id>.json` and records it as one
commit whose message carries machine-readable trailers:

    Report-Id: 42
    Payload-Sha256: <hex>
    Locked-At: 2026-03-31T18:00:00Z

Every git invocation goes through `_run`: arguments are an argv list (never a
shell string), commit messages travel on stdin, and each call is bounded by
the configured timeout.
"""

import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from freelance_backend.app.core.config import settings
from freelance_backend.app.core.exceptions import (
    LedgerCommandError, LedgerIntegrityError, LedgerTimeoutError
)

logger = logging.getLogger(__name__)

REVISION_PATTERN = re.compile(r"^[0-9a-f]{40}([0-9a-f]{24})?$")
TRAILER_PATTERN = re.compile(r"^([A-Za-z0-9-]+): (.+)$")
RECORD_SEPARATOR = "\x1e"
FIELD_SEPARATOR = "\x1f"


@dataclass
class GitResult:
    returncode: int
    stdout: bytes
    stderr: bytes


@dataclass
class LedgerRevision:
    """A ledger commit as read back from git."""
    revision_id: str
    committed_at: str
    trailers: dict = field(default_factory=dict)

    @property
    def report_id(self) -> Optional[int]:
        value = self.trailers.get("Report-Id")
        return int(value) if value and value.isdigit() else None

    @property
    def payload_sha256(self) -> Optional[str]:
        return self.trailers.get("Payload-Sha256")

    @property
    def locked_at(self) -> Optional[str]:
        return self.trailers.get("Locked-At")


def parse_trailers(message: str) -> dict:
    """Read `Key: value` trailers from the last paragraph of a commit message."""
    paragraphs = [p for p in message.strip().split("\n\n") if p.strip()]
    if not paragraphs:
        return {}
    trailers = {}
    for line in paragraphs[-1].splitlines():
        match = TRAILER_PATTERN.match(line.strip())
        if match:
            trailers[match.group(1)] = match.group(2).strip()
    return trailers


def build_commit_message(report_id: int, digest: str, locked_at: str, subject: str) -> str:
    return (
        f"{subject}\n"
        f"\n"
        f"Report-Id: {report_id}\n"
        f"Payload-Sha256: {digest}\n"
        f"Locked-At: {locked_at}\n"
    )


def _check_revision(revision_id: str) -> str:
    if not isinstance(revision_id, str) or not REVISION_PATTERN.match(revision_id):
        raise LedgerIntegrityError("Malformed ledger revision id", details={"revision_id": str(revision_id)})
    return revision_id


class GitLedgerRepository:
    """
    Git-backed ledger store.

    Writes are serialized inside one process; concurrent writers in other
    processes surface as a failed git command (retryable).
    """

    def __init__(
        self,
        path: Optional[str] = None,
        branch: Optional[str] = None,
        timeout: Optional[float] = None,
        author_name: Optional[str] = None,
        author_email: Optional[str] = None
    ):
        self.path = Path(path or settings.ledger_path)
        self.branch = branch or settings.ledger_branch
        self.timeout = timeout if timeout is not None else settings.ledger_commit_timeout_seconds
        self.author_name = author_name or settings.ledger_author_name
        self.author_email = author_email or settings.ledger_author_email
        self._write_lock = asyncio.Lock()

    def _env(self) -> dict:
        env = dict(os.environ)
        env.update({
            "GIT_AUTHOR_NAME": self.author_name,
            "GIT_AUTHOR_EMAIL": self.author_email,
            "GIT_COMMITTER_NAME": self.author_name,
            "GIT_COMMITTER_EMAIL": self.author_email,
            "GIT_TERMINAL_PROMPT": "0",
        })
        return env

    async def _run(self, *args: str, stdin: Optional[bytes] = None, check: bool = True) -> GitResult:
        """
        Run one git command inside the ledger directory.

        Raises:
            LedgerTimeoutError: The command exceeded the configured timeout (process killed)
            LedgerCommandError: check=True and the command exited non-zero
        """
        command = args[0] if args else "git"
        process = await asyncio.create_subprocess_exec(
            "git", *args,
            cwd=str(self.path),
            env=self._env(),
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(stdin), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("git %s timed out after %ss", command, self.timeout)
            raise LedgerTimeoutError(command, self.timeout)

        result = GitResult(returncode=process.returncode, stdout=stdout, stderr=stderr)
        if check and result.returncode != 0:
            raise LedgerCommandError(command, result.returncode, stderr.decode("utf-8", "replace"))
        return result

    async def init(self) -> None:
        """Create the ledger repository with its root commit if it does not exist yet."""
        self.path.mkdir(parents=True, exist_ok=True)

        if not (self.path / ".git").exists():
            await self._run("init", "-q")
            await self._run("symbolic-ref", "HEAD", f"refs/heads/{self.branch}")
            logger.info("Initialized ledger repository at %s", self.path)

        await self._run("config", "user.name", self.author_name)
        await self._run("config", "user.email", self.author_email)
        await self._run("config", "receive.denyNonFastForwards", "true")
        await self._run("config", "receive.denyDeletes", "true")

        if await self.head() is None:
            await self._run("commit", "-q", "--allow-empty", "-F", "-", stdin=b"Initialize report ledger\n")
            logger.info("Created ledger root commit on %s", self.branch)

    async def head(self) -> Optional[str]:
        result = await self._run("rev-parse", "--verify", "-q", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.decode().strip()

    async def commit_count(self) -> int:
        if await self.head() is None:
            return 0
        result = await self._run("rev-list", "--count", "HEAD")
        return int(result.stdout.decode().strip())

    async def revision_exists(self, revision_id: str) -> bool:
        result = await self._run("cat-file", "-e", f"{_check_revision(revision_id)}^{{commit}}", check=False)
        return result.returncode == 0

    async def verify_no_rewrite(self, expected_head: Optional[str]) -> list[LedgerRevision]:
        """
        Check that the last recorded revision is still part of the ledger history.

        Args:
            expected_head: Revision of the most recent LedgerCommit row, None when none exists

        Returns:
            Revisions committed after expected_head (candidates for relinking)

        Raises:
            LedgerIntegrityError: expected_head is missing or no longer an ancestor of HEAD
        """
        if expected_head is None:
            return await self.revisions_since(None)

        _check_revision(expected_head)
        head = await self.head()
        if head is None or not await self.revision_exists(expected_head):
            raise LedgerIntegrityError(
                "Recorded ledger revision is missing from the ledger store",
                details={"expected_head": expected_head, "head": head}
            )

        result = await self._run("merge-base", "--is-ancestor", expected_head, "HEAD", check=False)
        if result.returncode == 1:
            raise LedgerIntegrityError(
                "Ledger history was rewritten: recorded revision is not an ancestor of HEAD",
                details={"expected_head": expected_head, "head": head}
            )
        if result.returncode != 0:
            raise LedgerCommandError("merge-base", result.returncode, result.stderr.decode("utf-8", "replace"))

        return await self.revisions_since(expected_head)

    async def revisions_since(self, revision_id: Optional[str]) -> list[LedgerRevision]:
        """Report revisions after revision_id (all of them when None), oldest first."""
        if await self.head() is None:
            return []

        revision_range = "HEAD" if revision_id is None else f"{_check_revision(revision_id)}..HEAD"
        result = await self._run(
            "log", "--reverse",
            f"--format=%H{FIELD_SEPARATOR}%cI{FIELD_SEPARATOR}%B{RECORD_SEPARATOR}",
            revision_range
        )

        revisions = []
        for record in result.stdout.decode("utf-8").split(RECORD_SEPARATOR):
            record = record.strip("\n")
            if not record:
                continue
            revision, committed_at, message = record.split(FIELD_SEPARATOR, 2)
            trailers = parse_trailers(message)
            if "Report-Id" not in trailers:
                continue
            revisions.append(LedgerRevision(revision_id=revision, committed_at=committed_at, trailers=trailers))
        return revisions

    async def read_payload(self, revision_id: str, report_id: int) -> bytes:
        """
        Raises:
            LedgerCommandError: The revision does not contain the report file
        """
        result = await self._run("show", f"{_check_revision(revision_id)}:reports/{int(report_id)}.json")
        return result.stdout

    async def commit(self, payload: bytes, message: str, report_id: int) -> str:
        """
        Append a payload as a new ledger revision.

        Returns:
            The new revision id
        """
        relative = f"reports/{int(report_id)}.json"

        async with self._write_lock:
            await self._restore_worktree()

            target = self.path / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(target.write_bytes, payload)

            try:
                await self._run("add", "--", relative)
                await self._run("commit", "-q", "--allow-empty", "-F", "-", stdin=message.encode("utf-8"))
            except Exception:
                logger.warning("Ledger commit for report %s failed, restoring worktree", report_id)
                await self._restore_worktree()
                raise
            revision_id = await self.head()

        logger.info("Ledger revision %s recorded for report %s", revision_id, report_id)
        return revision_id

    async def _restore_worktree(self):
        """
        Drop whatever an abandoned commit attempt left behind: a stale index
        lock, staged or modified payloads, untracked report files.

        Caller must hold _write_lock.
        """
        index_lock = self.path / ".git" / "index.lock"
        if index_lock.exists():
            logger.warning("Removing stale ledger index lock %s", index_lock)
            await asyncio.to_thread(index_lock.unlink, missing_ok=True)

        await self._run("reset", "-q", "--hard", "HEAD")
        if (self.path / "reports").exists():
            await self._run("clean", "-q", "-f", "--", "reports")
