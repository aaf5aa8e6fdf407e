"""
Git ledger repository tests.

Run against a real git binary in a temporary directory; skipped when git is
not installed.
"""

import asyncio
import shutil

import pytest

from freelance_backend.app.core.exceptions import (
    LedgerCommandError, LedgerIntegrityError, LedgerTimeoutError, RetryableError
)
from freelance_backend.app.domain.ledger.payload import payload_hash
from freelance_backend.app.domain.ledger.repository import (
    GitLedgerRepository, build_commit_message, parse_trailers
)

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


@pytest.fixture
async def repository(tmp_path):
    repo = GitLedgerRepository(
        path=str(tmp_path / "ledger"),
        branch="main",
        timeout=10,
        author_name="ledger-test",
        author_email="ledger-test@example.invalid"
    )
    await repo.init()
    return repo


async def _lock(repository, report_id, payload=b'{"report_id":1}', subject=None):
    message = build_commit_message(
        report_id, payload_hash(payload), "2026-03-31T18:00:00Z",
        subject=subject or f"Lock report {report_id}"
    )
    return await repository.commit(payload, message, report_id)


def test_parse_trailers_reads_last_paragraph():
    message = "Lock report 7 (03/2026)\n\nBody text: not a trailer?\n\nReport-Id: 7\nPayload-Sha256: abc\n"
    assert parse_trailers(message) == {"Report-Id": "7", "Payload-Sha256": "abc"}
    assert parse_trailers("") == {}


@requires_git
@pytest.mark.asyncio
async def test_init_creates_root_commit_once(repository):
    head = await repository.head()
    assert head is not None
    assert await repository.commit_count() == 1

    await repository.init()
    assert await repository.head() == head
    assert await repository.revisions_since(None) == []


@requires_git
@pytest.mark.asyncio
async def test_commit_round_trips_payload_and_trailers(repository):
    payload = '{"description":"Café","report_id":1}'.encode("utf-8")
    revision_id = await _lock(repository, 1, payload)

    assert await repository.head() == revision_id
    assert await repository.read_payload(revision_id, 1) == payload

    revisions = await repository.revisions_since(None)
    assert [revision.revision_id for revision in revisions] == [revision_id]
    assert revisions[0].report_id == 1
    assert revisions[0].payload_sha256 == payload_hash(payload)
    assert revisions[0].locked_at == "2026-03-31T18:00:00Z"


@requires_git
@pytest.mark.asyncio
async def test_revisions_since_and_verify_no_rewrite(repository):
    first = await _lock(repository, 1)
    second = await _lock(repository, 2, b'{"report_id":2}')

    after_first = await repository.verify_no_rewrite(first)
    assert [revision.revision_id for revision in after_first] == [second]
    assert await repository.verify_no_rewrite(second) == []


@requires_git
@pytest.mark.asyncio
async def test_rewritten_history_is_integrity_error(repository):
    first = await _lock(repository, 1)
    second = await _lock(repository, 2, b'{"report_id":2}')

    # Drop `second` from the branch and append something else in its place.
    await repository._run("reset", "-q", "--hard", first)
    await _lock(repository, 3, b'{"report_id":3}')

    with pytest.raises(LedgerIntegrityError):
        await repository.verify_no_rewrite(second)


@requires_git
@pytest.mark.asyncio
async def test_unknown_revision_is_integrity_error(repository):
    with pytest.raises(LedgerIntegrityError):
        await repository.verify_no_rewrite("0" * 40)


@requires_git
@pytest.mark.asyncio
@pytest.mark.parametrize("revision_id", ["HEAD", "--all", "abc", "g" * 40, "; rm -rf /"])
async def test_malformed_revision_is_rejected(repository, revision_id):
    with pytest.raises(LedgerIntegrityError):
        await repository.read_payload(revision_id, 1)


@requires_git
@pytest.mark.asyncio
async def test_commit_message_is_stored_verbatim(repository):
    subject = 'Lock report 1 $(touch pwned) `id` && echo "x" > /tmp/y; | *'
    await _lock(repository, 1, subject=subject)

    result = await repository._run("log", "-1", "--format=%s")
    assert result.stdout.decode("utf-8").strip() == subject
    assert not (repository.path / "pwned").exists()


@requires_git
@pytest.mark.asyncio
async def test_missing_report_file_is_command_error(repository):
    revision_id = await _lock(repository, 1)

    with pytest.raises(LedgerCommandError) as exc_info:
        await repository.read_payload(revision_id, 2)

    assert isinstance(exc_info.value, RetryableError)


class HangingProcess:
    returncode = None

    def __init__(self):
        self.killed = False

    async def communicate(self, stdin=None):
        await asyncio.sleep(3600)

    def kill(self):
        self.killed = True

    async def wait(self):
        self.returncode = -9
        return self.returncode


@pytest.mark.asyncio
async def test_hung_git_command_times_out(tmp_path, mocker):
    process = HangingProcess()
    mocker.patch("asyncio.create_subprocess_exec", return_value=process)
    repo = GitLedgerRepository(path=str(tmp_path), timeout=0.05)

    with pytest.raises(LedgerTimeoutError) as exc_info:
        await repo._run("commit", "-q", "-F", "-", stdin=b"message")

    assert process.killed
    assert exc_info.value.error_code == "ledger_timeout"


async def _status(repository):
    result = await repository._run("status", "--porcelain", "--untracked-files=all")
    return result.stdout.decode("utf-8")


@requires_git
@pytest.mark.asyncio
@pytest.mark.parametrize("failure", [
    LedgerCommandError("commit", 1, "fatal: unable to write new index file"),
    LedgerTimeoutError("commit", 10),
])
async def test_failed_commit_does_not_leak_into_next_commit(repository, mocker, failure):
    real_run = repository._run

    async def run(*args, **kwargs):
        if args[0] == "commit":
            # A killed git leaves its index lock behind
            (repository.path / ".git" / "index.lock").write_bytes(b"")
            raise failure
        return await real_run(*args, **kwargs)

    mocker.patch.object(repository, "_run", side_effect=run)
    with pytest.raises(RetryableError):
        await _lock(repository, 1)
    mocker.patch.object(repository, "_run", side_effect=real_run)

    assert not (repository.path / ".git" / "index.lock").exists()
    assert await _status(repository) == ""

    revision_id = await _lock(repository, 2, b'{"report_id":2}')

    result = await repository._run("show", "--name-only", "--format=", revision_id)
    assert result.stdout.decode("utf-8").split() == ["reports/2.json"]
    assert [revision.report_id for revision in await repository.revisions_since(None)] == [2]


@requires_git
@pytest.mark.asyncio
async def test_stale_index_lock_does_not_block_commit(repository):
    (repository.path / "reports").mkdir()
    (repository.path / "reports" / "9.json").write_bytes(b'{"abandoned":true}')
    (repository.path / ".git" / "index.lock").write_bytes(b"")

    revision_id = await _lock(repository, 1)

    assert await repository.head() == revision_id
    assert await _status(repository) == ""
    result = await repository._run("show", "--name-only", "--format=", revision_id)
    assert result.stdout.decode("utf-8").split() == ["reports/1.json"]
