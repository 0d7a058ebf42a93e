"""Tests for the RemoteApplier."""

from unittest.mock import MagicMock, call

import pytest

from sitepush.exceptions import SitepushSessionError
from sitepush.sync.applier import ApplyResult, RemoteApplier
from sitepush.sync.planner import ActionKind, DiffPlanner

ROOT = "/htdocs"
ONES = "1" * 32
TWOS = "2" * 32


def _plan(local, remote=None):
    return DiffPlanner().plan(
        {path: ONES for path in local}, {path: TWOS for path in remote or []}
    )


def _session(existing=(ROOT, ROOT + "/")):
    """Create a mock session where only the given directories exist."""
    session = MagicMock()
    session.change_directory.side_effect = lambda path: path in existing
    session.current_directory.return_value = ROOT
    session.make_directory.return_value = True
    session.put.return_value = True
    session.delete.return_value = True
    return session


def _put_targets(session):
    return [c.args[1] for c in session.put.call_args_list]


class TestApplyUploads:
    """Tests for uploading planned files."""

    def test_uploads_new_files_and_manifest(self, tmp_path):
        """Every upload happens and the manifest goes last."""
        session = _session()
        plan = _plan(["a.html", "b.html"])

        result = RemoteApplier().apply(plan, session, ROOT, tmp_path)

        assert result.ok
        assert result.attempted == 2
        assert result.uploaded == 2
        assert result.manifest_uploaded
        assert session.put.call_args_list == [
            call(tmp_path / "a.html", "/htdocs/a.html"),
            call(tmp_path / "b.html", "/htdocs/b.html"),
            call(tmp_path / "digest.md5", "/htdocs/digest.md5"),
        ]

    def test_failed_upload_does_not_stop_the_rest(self, tmp_path):
        """One failure is counted and the other uploads still happen."""
        session = _session()
        session.put.side_effect = lambda local, remote: remote != "/htdocs/b.html"
        plan = _plan(["a.html", "b.html", "c.html"])

        result = RemoteApplier().apply(plan, session, ROOT, tmp_path)

        assert result.attempted == 3
        assert result.uploaded == 2
        assert result.errors == 1
        assert result.failed_paths == ["b.html"]
        assert not result.ok

    def test_failed_upload_keeps_remote_manifest(self, tmp_path):
        """The manifest is not uploaded after a failure."""
        session = _session()
        session.put.side_effect = lambda local, remote: remote != "/htdocs/b.html"
        plan = _plan(["a.html", "b.html"])

        result = RemoteApplier().apply(plan, session, ROOT, tmp_path)

        assert not result.manifest_uploaded
        assert "/htdocs/digest.md5" not in _put_targets(session)

    def test_upload_raising_counts_as_failure(self, tmp_path):
        """An exception from put is treated like a failed transfer."""
        session = _session()
        session.put.side_effect = OSError("local file vanished")
        plan = _plan(["a.html"])

        result = RemoteApplier().apply(plan, session, ROOT, tmp_path)

        assert result.errors == 1
        assert result.failed_paths == ["a.html"]

    def test_manifest_failure_is_an_error(self, tmp_path):
        """A failed manifest upload makes the sync unsuccessful."""
        session = _session()
        session.put.side_effect = lambda local, remote: not remote.endswith(
            "digest.md5"
        )
        plan = _plan(["a.html"])

        result = RemoteApplier().apply(plan, session, ROOT, tmp_path)

        assert result.uploaded == 1
        assert result.errors == 1
        assert result.failed_paths == ["digest.md5"]
        assert not result.manifest_uploaded

    def test_nested_uploads_use_absolute_paths(self, tmp_path):
        """Remote paths are built from the remote root, not the cwd."""
        session = _session()
        plan = _plan(["a/b/c.html"])

        RemoteApplier().apply(plan, session, ROOT, tmp_path)

        assert session.put.call_args_list[0] == call(
            tmp_path / "a/b/c.html", "/htdocs/a/b/c.html"
        )

    def test_on_action_callback(self, tmp_path):
        """The callback sees every transfer and its outcome."""
        session = _session()
        session.put.side_effect = lambda local, remote: remote != "/htdocs/b.html"
        seen = []
        applier = RemoteApplier(
            on_action=lambda a, ok: seen.append((a.relative_path, ok))
        )

        applier.apply(_plan(["a.html", "b.html"]), session, ROOT, tmp_path)

        assert seen == [("a.html", True), ("b.html", False)]


class TestApplyDirectories:
    """Tests for the directory creation pass."""

    def test_shorter_directories_created_first(self, tmp_path):
        """'a' is created before 'ab' and nested dirs after their parents."""
        session = _session()
        plan = _plan(["ab/y.html", "a/x.html", "a/b/z.html"])

        result = RemoteApplier().apply(plan, session, ROOT, tmp_path)

        assert session.make_directory.call_args_list == [
            call("/htdocs/a"),
            call("/htdocs/ab"),
            call("/htdocs/a/b"),
        ]
        assert result.directories_created == 3

    def test_missing_ancestors_are_created(self, tmp_path):
        """Intermediate directories without files are created too."""
        session = _session()
        plan = _plan(["a/b/c/d.html"])

        RemoteApplier().apply(plan, session, ROOT, tmp_path)

        assert session.make_directory.call_args_list == [
            call("/htdocs/a"),
            call("/htdocs/a/b"),
            call("/htdocs/a/b/c"),
        ]

    def test_existing_directories_are_not_created(self, tmp_path):
        """A directory that can be entered is left alone."""
        session = _session(existing=(ROOT, ROOT + "/", "/htdocs/a"))
        plan = _plan(["a/x.html"])

        result = RemoteApplier().apply(plan, session, ROOT, tmp_path)

        session.make_directory.assert_not_called()
        assert result.directories_created == 0

    def test_root_is_never_provisioned(self, tmp_path):
        """Root-level files need no directory creation."""
        session = _session()

        RemoteApplier().apply(_plan(["index.html"]), session, ROOT, tmp_path)

        session.make_directory.assert_not_called()

    def test_returns_to_remote_root(self, tmp_path):
        """The session is back at the remote root after creation."""
        session = _session()

        RemoteApplier().apply(_plan(["a/x.html"]), session, ROOT, tmp_path)

        cwd_calls = [c.args[0] for c in session.change_directory.call_args_list]
        assert cwd_calls == ["/htdocs", "/htdocs/a", "/htdocs/"]

    def test_mkdir_failure_does_not_abort(self, tmp_path):
        """A directory that cannot be created surfaces as upload errors."""
        session = _session()
        session.make_directory.return_value = False
        session.put.side_effect = lambda local, remote: not remote.startswith(
            "/htdocs/a/"
        )

        result = RemoteApplier().apply(
            _plan(["a/x.html", "index.html"]), session, ROOT, tmp_path
        )

        assert result.attempted == 2
        assert result.errors == 1
        assert result.failed_paths == ["a/x.html"]


class TestApplySafety:
    """Tests for fatal errors, dry runs and remote deletion."""

    def test_cannot_enter_remote_root(self, tmp_path):
        """A failed cwd to the remote root aborts before any transfer."""
        session = _session(existing=())

        with pytest.raises(SitepushSessionError, match="Cannot change into"):
            RemoteApplier().apply(_plan(["a.html"]), session, ROOT, tmp_path)

        session.put.assert_not_called()
        session.make_directory.assert_not_called()

    def test_no_session_outside_dry_run(self, tmp_path):
        """A real run needs a session."""
        with pytest.raises(SitepushSessionError):
            RemoteApplier().apply(_plan(["a.html"]), None, ROOT, tmp_path)

    def test_dry_run_touches_nothing(self, tmp_path):
        """A dry run only counts what would be done."""
        session = _session()
        plan = _plan(["a.html", "d/b.html"], remote=["old.html"])

        result = RemoteApplier(dry_run=True).apply(plan, session, ROOT, tmp_path)

        assert session.method_calls == []
        assert result.dry_run
        assert result.attempted == 2
        assert result.removals_pending == 1
        assert result.uploaded == 0

    def test_dry_run_without_session(self, tmp_path):
        """A dry run works without any session."""
        result = RemoteApplier(dry_run=True).apply(
            _plan(["a.html"]), None, ROOT, tmp_path
        )
        assert result.attempted == 1

    def test_remote_only_files_are_kept_by_default(self, tmp_path):
        """Removal actions are never executed without authorization."""
        session = _session()
        plan = _plan(["a.html"], remote=["old.html", "d/stale.html"])

        result = RemoteApplier().apply(plan, session, ROOT, tmp_path)

        session.delete.assert_not_called()
        assert result.removals_pending == 2
        assert result.removed == 0
        assert result.ok
        assert result.manifest_uploaded

    def test_remove_when_allowed(self, tmp_path):
        """With allow_remove, remote-only files are deleted."""
        session = _session()
        plan = _plan(["a.html"], remote=["old.html"])

        result = RemoteApplier(allow_remove=True).apply(plan, session, ROOT, tmp_path)

        session.delete.assert_called_once_with("/htdocs/old.html")
        assert result.removed == 1
        assert result.removals_pending == 0

    def test_failed_removal_blocks_manifest(self, tmp_path):
        """A removal failure counts as an error."""
        session = _session()
        session.delete.return_value = False
        plan = _plan([], remote=["old.html"])

        result = RemoteApplier(allow_remove=True).apply(plan, session, ROOT, tmp_path)

        assert result.errors == 1
        assert result.failed_paths == ["old.html"]
        assert not result.manifest_uploaded

    def test_ignored_remote_directories(self, tmp_path):
        """Ignored directories and their subdirectories are left alone."""
        (tmp_path / "digest.md5").write_text("")
        session = _session()
        plan = _plan(
            ["index.html", "stats/a.html", "stats/sub/b.html", "statsx/c.html"],
            remote=["stats/old.html"],
        )

        result = RemoteApplier(
            remote_ignore_dirs={"stats/"}, allow_remove=True
        ).apply(plan, session, ROOT, tmp_path)

        targets = _put_targets(session)
        assert "/htdocs/stats/a.html" not in targets
        assert "/htdocs/stats/sub/b.html" not in targets
        assert "/htdocs/statsx/c.html" in targets
        session.delete.assert_not_called()
        assert session.make_directory.call_args_list == [call("/htdocs/statsx")]
        assert result.attempted == 2

    def test_ignored_paths_left_out_of_uploaded_manifest(self, tmp_path):
        """Files in ignored directories are not recorded as pushed."""
        (tmp_path / "digest.md5").write_text(
            f"{ONES}  index.html\n{ONES}  stats/a.html\n"
            f"{ONES}  stats/sub/b.html\n{ONES}  statsx/c.html\n"
        )
        uploaded = []

        def put(local, remote):
            if remote.endswith("digest.md5"):
                uploaded.append(local.read_text())
            return True

        session = _session()
        session.put.side_effect = put
        plan = _plan(
            ["index.html", "stats/a.html", "stats/sub/b.html", "statsx/c.html"]
        )

        result = RemoteApplier(remote_ignore_dirs={"stats"}).apply(
            plan, session, ROOT, tmp_path
        )

        assert result.manifest_uploaded
        assert uploaded == [f"{ONES}  index.html\n{ONES}  statsx/c.html\n"]
        assert "stats/a.html" in (tmp_path / "digest.md5").read_text()

    def test_unreadable_manifest_with_ignored_dirs(self, tmp_path):
        """A missing local manifest is a failed manifest upload."""
        session = _session()

        result = RemoteApplier(remote_ignore_dirs={"stats"}).apply(
            _plan(["index.html"]), session, ROOT, tmp_path
        )

        assert result.errors == 1
        assert result.failed_paths == ["digest.md5"]
        assert not result.manifest_uploaded

    def test_is_ignored(self):
        """Prefix matching respects directory boundaries."""
        applier = RemoteApplier(remote_ignore_dirs={"cgi-bin"})
        assert applier.is_ignored("cgi-bin")
        assert applier.is_ignored("cgi-bin/sub")
        assert not applier.is_ignored("cgi-bin2")
        assert not applier.is_ignored(".")


class TestParallelApply:
    """Tests for parallel uploads on worker sessions."""

    def test_requires_session_factory(self):
        """Parallel uploads without a session factory are rejected."""
        with pytest.raises(ValueError):
            RemoteApplier(max_workers=4)

    def test_parallel_uploads(self, tmp_path):
        """Files are uploaded on worker sessions, the manifest on the main one."""
        workers = []

        def factory():
            worker = _session()
            workers.append(worker)
            return worker

        session = _session()
        plan = _plan(["index.html", "a/x.html", "b/y.html", "c/z.html"])
        applier = RemoteApplier(max_workers=2, session_factory=factory)

        result = applier.apply(plan, session, ROOT, tmp_path)

        assert result.ok
        assert result.attempted == 4
        assert result.uploaded == 4
        assert _put_targets(session) == ["/htdocs/digest.md5"]
        worker_targets = sorted(t for w in workers for t in _put_targets(w))
        assert worker_targets == [
            "/htdocs/a/x.html",
            "/htdocs/b/y.html",
            "/htdocs/c/z.html",
            "/htdocs/index.html",
        ]
        assert 1 <= len(workers) <= 2
        for worker in workers:
            worker.close.assert_called_once()

    def test_worker_session_failure(self, tmp_path):
        """A worker that cannot connect fails its files, not the run."""

        def factory():
            raise SitepushSessionError("connection refused")

        session = _session()
        plan = _plan(["a/x.html", "b/y.html"])
        applier = RemoteApplier(max_workers=2, session_factory=factory)

        result = applier.apply(plan, session, ROOT, tmp_path)

        assert result.attempted == 2
        assert result.errors == 2
        assert sorted(result.failed_paths) == ["a/x.html", "b/y.html"]
        assert not result.manifest_uploaded


class TestApplyResult:
    """Tests for ApplyResult."""

    def test_to_dict(self):
        result = ApplyResult(errors=1, attempted=2, uploaded=1, failed_paths=["x"])
        data = result.to_dict()
        assert data["errors"] == 1
        assert data["failed_paths"] == ["x"]
        assert data["manifest_uploaded"] is False

    def test_plan_kinds_used(self):
        """Only upload actions count as attempted."""
        plan = _plan(["a.html"], remote=["b.html"])
        assert plan.count(ActionKind.NEW) == 1
        assert plan.count(ActionKind.REMOVE) == 1
