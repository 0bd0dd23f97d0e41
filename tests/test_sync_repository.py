"""Tests for sync/repository.py: the GitPython-backed git layer.

Unit tests cover error classification, remote URLs and the credential
environment.  Tests marked ``git`` drive the real git binary against a
local bare repository standing in for the shared remote.
"""

from pathlib import Path

import pytest
from git import Repo
from git.exc import GitCommandError

from histsync.file_handler import read_log
from histsync.sync.errors import (
    AuthError,
    NetworkError,
    PushConflictError,
    RepositoryError,
)
from histsync.sync.models import Credential, CredentialSource
from histsync.sync.repository import (
    REMOTE_NAME,
    RepositoryManager,
    classify_git_error,
    git_environment,
    remote_url,
)
from histsync.sync.retry import RetryPolicy


def _git_error(stderr, command="push"):
    return GitCommandError(["git", command], 128, stderr.encode("utf-8"))


# ---------------------------------------------------------------------------
# classify_git_error()
# ---------------------------------------------------------------------------


class TestClassifyGitError:
    """Tests for classify_git_error()."""

    @pytest.mark.parametrize(
        "stderr",
        [
            "remote: Invalid username or password.\n"
            "fatal: Authentication failed for 'https://github.com/me/h.git/'",
            "fatal: could not read Username for 'https://github.com': "
            "terminal prompts disabled",
            "fatal: unable to access 'https://github.com/me/h.git/': "
            "The requested URL returned error: 403",
            "git@github.com: Permission denied (publickey).\n"
            "fatal: Could not read from remote repository.",
        ],
    )
    def test_auth(self, stderr):
        assert isinstance(classify_git_error(_git_error(stderr), "push"), AuthError)

    @pytest.mark.parametrize(
        "stderr",
        [
            " ! [rejected]        HEAD -> main (fetch first)\n"
            "error: failed to push some refs",
            " ! [rejected]        HEAD -> main (non-fast-forward)",
            "hint: Updates were rejected because the tip of your current "
            "branch is behind",
        ],
    )
    def test_push_conflict(self, stderr):
        assert isinstance(
            classify_git_error(_git_error(stderr), "push"), PushConflictError
        )

    @pytest.mark.parametrize(
        "stderr",
        [
            "fatal: unable to access 'https://github.com/me/h.git/': "
            "Could not resolve host: github.com",
            "fatal: unable to access 'https://example.com/': "
            "Failed to connect to example.com port 443: Connection refused",
            "Timeout: the command did not complete in 30 secs.",
            "fatal: the remote end hung up unexpectedly\nfatal: early EOF",
        ],
    )
    def test_network(self, stderr):
        exc = classify_git_error(_git_error(stderr, "fetch"), "fetch")
        assert isinstance(exc, NetworkError)
        assert str(exc).startswith("git fetch failed")

    @pytest.mark.parametrize(
        "stderr",
        [
            "fatal: Unable to create '/r/.git/index.lock': File exists.",
            "fatal: not a git repository (or any of the parent directories)",
            "error: something unexpected",
        ],
    )
    def test_repository(self, stderr):
        assert isinstance(
            classify_git_error(_git_error(stderr), "commit"), RepositoryError
        )


# ---------------------------------------------------------------------------
# remote_url() / git_environment()
# ---------------------------------------------------------------------------


class TestRemoteUrl:
    def test_bare_locator_gets_https_and_identity(self):
        assert (
            remote_url("github.com/me/h.git", "me")
            == "https://me@github.com/me/h.git"
        )

    def test_identity_is_quoted(self):
        assert remote_url("host/r.git", "me@corp").startswith(
            "https://me%40corp@host"
        )

    def test_scheme_used_verbatim(self):
        assert remote_url("https://host/r.git", "me") == "https://host/r.git"

    def test_scp_style_used_verbatim(self):
        assert remote_url("git@github.com:me/h.git", "me") == (
            "git@github.com:me/h.git"
        )

    def test_local_path_used_verbatim(self):
        assert remote_url("/srv/git/h.git", "me") == "/srv/git/h.git"


class TestGitEnvironment:
    def test_never_prompts(self):
        assert git_environment(None) == {
            "GIT_TERMINAL_PROMPT": "0",
            "GCM_INTERACTIVE": "never",
        }

    def test_credential_helper_injected(self, credential):
        env = git_environment(credential)
        assert env["HISTSYNC_GIT_USERNAME"] == "octocat"
        assert env["HISTSYNC_GIT_TOKEN"] == "ghp_testtoken"
        assert env["GIT_CONFIG_COUNT"] == "2"
        assert env["GIT_CONFIG_KEY_0"] == "credential.helper"
        assert env["GIT_CONFIG_VALUE_0"] == ""
        # The token travels by variable, never inside the helper text
        assert "ghp_testtoken" not in env["GIT_CONFIG_VALUE_1"]


# ---------------------------------------------------------------------------
# Real git
# ---------------------------------------------------------------------------


@pytest.fixture
def bare_remote(tmp_path):
    path = tmp_path / "remote.git"
    Repo.init(path, bare=True)
    return path


@pytest.fixture
def local_credential(bare_remote):
    return Credential(
        identity="tester",
        secret="not-a-real-token",
        locator=str(bare_remote),
        source=CredentialSource.ENVIRONMENT,
    )


@pytest.fixture
def manager():
    return RepositoryManager(
        branch="main",
        tracked_file="history.txt",
        fetch_timeout=30,
        push_timeout=30,
        retry_policy=RetryPolicy(max_attempts=2, sleep=lambda s: None),
        author_email="tester@example.com",
    )


def _connect(manager, path, credential):
    handle = manager.open_or_init(path)
    manager.ensure_remote(handle, credential.locator, credential)
    manager.fetch(handle, credential)
    return handle


@pytest.mark.git
class TestOpenOrInit:
    """Tests for RepositoryManager.open_or_init()."""

    def test_creates_repository(self, manager, tmp_path):
        path = tmp_path / "a" / "repo"
        handle = manager.open_or_init(path)
        assert (path / ".git").is_dir()
        assert handle.repo.git.symbolic_ref("HEAD") == "refs/heads/main"
        assert not handle.has_origin

    def test_idempotent(self, manager, tmp_path):
        path = tmp_path / "repo"
        first = manager.open_or_init(path)
        second = manager.open_or_init(path)
        assert Path(first.repo.git_dir) == Path(second.repo.git_dir)

    def test_corrupt_git_dir(self, manager, tmp_path):
        path = tmp_path / "repo"
        (path / ".git").mkdir(parents=True)
        with pytest.raises(RepositoryError, match="corrupt|Cannot open"):
            manager.open_or_init(path)

    def test_index_lock(self, manager, tmp_path):
        path = tmp_path / "repo"
        manager.open_or_init(path)
        (path / ".git" / "index.lock").write_text("")
        with pytest.raises(RepositoryError, match="locked"):
            manager.open_or_init(path)


@pytest.mark.git
class TestEnsureRemote:
    """Tests for RepositoryManager.ensure_remote()."""

    def test_adds_origin(self, manager, tmp_path, local_credential, bare_remote):
        handle = manager.open_or_init(tmp_path / "repo")
        manager.ensure_remote(handle, local_credential.locator, local_credential)
        assert handle.has_origin
        assert handle.repo.remote(REMOTE_NAME).url == str(bare_remote)

    def test_existing_origin_untouched(self, manager, tmp_path, credential):
        handle = manager.open_or_init(tmp_path / "repo")
        handle.repo.create_remote(REMOTE_NAME, "https://example.com/mine.git")
        manager.ensure_remote(handle, credential.locator, credential)
        assert handle.repo.remote(REMOTE_NAME).url == (
            "https://example.com/mine.git"
        )

    def test_token_never_written_to_config(self, manager, tmp_path, credential):
        path = tmp_path / "repo"
        handle = manager.open_or_init(path)
        manager.ensure_remote(handle, credential.locator, credential)
        config_text = (path / ".git" / "config").read_text()
        assert "ghp_testtoken" not in config_text
        assert "https://octocat@github.com/octocat/history.git" in config_text


@pytest.mark.git
class TestFetchCommitPush:
    """Round trips through the bare remote."""

    def test_fetch_empty_remote(self, manager, tmp_path, local_credential):
        handle = manager.open_or_init(tmp_path / "repo")
        manager.ensure_remote(handle, local_credential.locator, local_credential)

        result = manager.fetch(handle, local_credential)

        assert result.head is None
        assert not result.updated
        assert manager.read_remote_log(handle) == []

    def test_push_then_fetch_from_other_machine(
        self, manager, tmp_path, local_credential
    ):
        a = _connect(manager, tmp_path / "a", local_credential)
        manager.write_tracked(a, ["ls", "pwd"])
        pushed = manager.commit_and_push(
            a, "Sync shell history from a", local_credential
        )

        b = manager.open_or_init(tmp_path / "b")
        manager.ensure_remote(b, local_credential.locator, local_credential)
        result = manager.fetch(b, local_credential)

        assert result.updated
        assert result.head == pushed.commit
        assert manager.read_remote_log(b) == ["ls", "pwd"]

    def test_second_fetch_already_up_to_date(
        self, manager, tmp_path, local_credential
    ):
        a = _connect(manager, tmp_path / "a", local_credential)
        manager.write_tracked(a, ["ls"])
        manager.commit_and_push(a, "one", local_credential)

        result = manager.fetch(a, local_credential)

        assert not result.updated
        assert result.head is not None

    def test_commit_author(self, manager, tmp_path, local_credential):
        a = _connect(manager, tmp_path / "a", local_credential)
        manager.write_tracked(a, ["ls"])
        manager.commit_and_push(a, "Sync shell history from a", local_credential)

        commit = a.repo.head.commit
        assert commit.message.strip() == "Sync shell history from a"
        assert commit.author.name == "tester"
        assert commit.author.email == "tester@example.com"

    def test_commit_builds_on_remote_head(
        self, manager, tmp_path, local_credential
    ):
        a = _connect(manager, tmp_path / "a", local_credential)
        manager.write_tracked(a, ["one"])
        first = manager.commit_and_push(a, "first", local_credential)

        b = _connect(manager, tmp_path / "b", local_credential)
        manager.write_tracked(b, ["one", "two"])
        second = manager.commit_and_push(b, "second", local_credential)

        parents = [p.hexsha for p in b.repo.commit(second.commit).parents]
        assert parents == [first.commit]

    def test_rejected_push_is_a_conflict(
        self, manager, tmp_path, local_credential
    ):
        a = _connect(manager, tmp_path / "a", local_credential)
        manager.write_tracked(a, ["one"])
        manager.commit_and_push(a, "first", local_credential)

        b = _connect(manager, tmp_path / "b", local_credential)

        manager.write_tracked(a, ["one", "from-a"])
        manager.commit_and_push(a, "second", local_credential)

        manager.write_tracked(b, ["one", "from-b"])
        with pytest.raises(PushConflictError):
            manager.commit_and_push(b, "racing", local_credential)

    def test_unreachable_remote_is_network_error(self, manager, tmp_path):
        credential = Credential(
            identity="tester",
            secret="x",
            locator=str(tmp_path / "does-not-exist.git"),
            source=CredentialSource.ENVIRONMENT,
        )
        handle = manager.open_or_init(tmp_path / "repo")
        manager.ensure_remote(handle, credential.locator, credential)

        with pytest.raises((NetworkError, RepositoryError)):
            manager.fetch(handle, credential)


@pytest.mark.git
class TestCheckpointRestore:
    """Tests for checkpoint() / restore()."""

    def test_restore_unborn_branch(self, manager, tmp_path, local_credential):
        handle = _connect(manager, tmp_path / "repo", local_credential)
        checkpoint = manager.checkpoint(handle)

        manager.write_tracked(handle, ["ls"])
        manager.commit(handle, "local only", "tester")
        manager.restore(handle, checkpoint)

        assert not (tmp_path / "repo" / "history.txt").exists()
        assert manager._resolve(handle.repo, manager.branch_ref) is None
        assert handle.repo.git.symbolic_ref("HEAD") == "refs/heads/main"

    def test_restore_after_rejected_push(
        self, manager, tmp_path, local_credential
    ):
        a = _connect(manager, tmp_path / "a", local_credential)
        manager.write_tracked(a, ["one"])
        manager.commit_and_push(a, "first", local_credential)

        b = _connect(manager, tmp_path / "b", local_credential)
        manager.write_tracked(b, ["one", "b1"])
        manager.commit_and_push(b, "from b", local_credential)
        before_head = b.repo.head.commit.hexsha

        manager.fetch(a, local_credential)
        manager.write_tracked(a, ["one", "b1", "a2"])
        manager.commit_and_push(a, "from a", local_credential)

        checkpoint = manager.checkpoint(b)
        manager.write_tracked(b, ["one", "b1", "b2"])
        with pytest.raises(PushConflictError):
            manager.commit_and_push(b, "racing", local_credential)
        manager.restore(b, checkpoint)

        assert b.repo.head.commit.hexsha == before_head
        assert read_log(tmp_path / "b" / "history.txt") == ["one", "b1"]
        assert not b.repo.is_dirty(untracked_files=False)

    def test_retry_after_conflict_succeeds(
        self, manager, tmp_path, local_credential
    ):
        a = _connect(manager, tmp_path / "a", local_credential)
        manager.write_tracked(a, ["one"])
        manager.commit_and_push(a, "first", local_credential)
        b = _connect(manager, tmp_path / "b", local_credential)
        manager.write_tracked(a, ["one", "a2"])
        manager.commit_and_push(a, "second", local_credential)

        checkpoint = manager.checkpoint(b)
        manager.write_tracked(b, ["one", "b2"])
        with pytest.raises(PushConflictError):
            manager.commit_and_push(b, "racing", local_credential)
        manager.restore(b, checkpoint)

        manager.fetch(b, local_credential)
        assert manager.read_remote_log(b) == ["one", "a2"]
        manager.write_tracked(b, ["one", "a2", "b2"])
        manager.commit_and_push(b, "retry", local_credential)

        manager.fetch(a, local_credential)
        assert manager.read_remote_log(a) == ["one", "a2", "b2"]
