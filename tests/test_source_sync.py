import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import build_config
import source_sync
from build_errors import SourceSyncError


class SynchronizeSourceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tempdir = tempfile.TemporaryDirectory()
        self.workdir = Path(self._tempdir.name)
        self.remote = self.workdir / "remote.git"
        self.upstream = self.workdir / "upstream"
        self.home = self.workdir / "home"
        self.home.mkdir()

        self._create_remote_repository()

    def tearDown(self) -> None:
        self._tempdir.cleanup()

    def _git(self, *args: str, cwd: Path | None = None) -> str:
        result = subprocess.run(
            ["git", *args], cwd=cwd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True
        )
        return result.stdout.strip()

    def _create_remote_repository(self) -> None:
        self._git("init", "--bare", str(self.remote))
        self._git("init", "-b", "master", str(self.upstream))
        self._git("config", "user.email", "tests@example.com", cwd=self.upstream)
        self._git("config", "user.name", "Sync Tests", cwd=self.upstream)
        (self.upstream / "README.md").write_text("initial\n")
        (self.upstream / ".gitignore").write_text("*.o\n")
        self._git("add", "README.md", ".gitignore", cwd=self.upstream)
        self._git("commit", "-m", "initial", cwd=self.upstream)
        self._git("remote", "add", "origin", str(self.remote), cwd=self.upstream)
        self._git("push", "origin", "master", cwd=self.upstream)

    def _push_commit(self, content: str, message: str) -> None:
        (self.upstream / "README.md").write_text(content)
        self._git("commit", "-am", message, cwd=self.upstream)
        self._git("push", "origin", "master", cwd=self.upstream)

    def _config(self, *argv: str) -> build_config.Configuration:
        return build_config.resolve_configuration(
            ["--repo", str(self.remote), *argv], home=self.home, cpu_count=2
        )

    def test_fresh_clone(self) -> None:
        config = self._config()

        checkout = source_sync.synchronize_source(config)
        source_sync.verify_checkout(config)

        self.assertTrue(checkout.cloned)
        self.assertEqual("initial", checkout.subject)
        self.assertEqual("initial\n", (config.source_dir / "README.md").read_text())

    def test_update_in_place_discards_local_changes(self) -> None:
        config = self._config()
        source_sync.synchronize_source(config)

        (config.source_dir / "README.md").write_text("local edit\n")
        (config.source_dir / "scratch.txt").write_text("untracked\n")
        (config.source_dir / "main.o").write_text("ignored build product\n")
        self._push_commit("second\n", "second")

        with self.assertLogs(source_sync.LOG, level="INFO") as logs:
            checkout = source_sync.synchronize_source(config)

        log_text = "\n".join(logs.output)
        self.assertFalse(checkout.cloned)
        self.assertIn("git fetch", log_text)
        self.assertIn("git reset --hard origin/master", log_text)
        self.assertNotIn("Cloning", log_text)
        self.assertEqual("second", checkout.subject)
        self.assertEqual("second\n", (config.source_dir / "README.md").read_text())
        self.assertFalse((config.source_dir / "scratch.txt").exists())
        self.assertFalse((config.source_dir / "main.o").exists())

    def test_switches_to_requested_branch(self) -> None:
        source_sync.synchronize_source(self._config())

        self._git("checkout", "-b", "feature", cwd=self.upstream)
        (self.upstream / "FEATURE.md").write_text("feature\n")
        self._git("add", "FEATURE.md", cwd=self.upstream)
        self._git("commit", "-m", "feature work", cwd=self.upstream)
        self._git("push", "origin", "feature", cwd=self.upstream)

        config = self._config("--branch", "feature")
        source_sync.synchronize_source(config)
        source_sync.verify_checkout(config)

        self.assertTrue((config.source_dir / "FEATURE.md").exists())

    def test_clean_removes_previous_contents(self) -> None:
        config = self._config("--clean")
        config.source_dir.mkdir()
        marker = config.source_dir / "stale.txt"
        marker.write_text("stale\n")

        checkout = source_sync.synchronize_source(config)

        self.assertTrue(checkout.cloned)
        self.assertFalse(marker.exists())

    def test_non_repository_directory_requires_clean(self) -> None:
        config = self._config()
        config.source_dir.mkdir()
        (config.source_dir / "notes.txt").write_text("not a checkout\n")

        with self.assertRaises(SourceSyncError) as ctx:
            source_sync.synchronize_source(config)

        self.assertIn("--clean", str(ctx.exception))

    def test_unknown_branch_raises_with_git_diagnostic(self) -> None:
        config = self._config("--branch", "does-not-exist")

        with self.assertRaises(SourceSyncError) as ctx:
            source_sync.synchronize_source(config)

        self.assertEqual("SourceSyncError", ctx.exception.kind)
        self.assertIn("does-not-exist", ctx.exception.diagnostic)

    def test_origin_repointed_to_configured_repository(self) -> None:
        config = self._config()
        source_sync.synchronize_source(config)
        self._git("remote", "set-url", "origin", "https://example.invalid/lnav.git", cwd=config.source_dir)

        source_sync.synchronize_source(config)

        self.assertEqual(str(self.remote), self._git("remote", "get-url", "origin", cwd=config.source_dir))

    def test_verify_detects_wrong_branch(self) -> None:
        config = self._config()
        source_sync.synchronize_source(config)
        self._git("checkout", "-b", "detour", cwd=config.source_dir)

        with self.assertRaises(SourceSyncError) as ctx:
            source_sync.verify_checkout(config)

        self.assertIn("detour", str(ctx.exception))

    def test_clone_aborts_when_disk_space_low(self) -> None:
        disk_usage_type = type(shutil.disk_usage(Path.cwd()))
        low_space = disk_usage_type(total=10, used=9, free=1)

        with mock.patch("source_sync.shutil.disk_usage", return_value=low_space):
            with self.assertRaises(SourceSyncError) as ctx:
                source_sync.synchronize_source(self._config())

        self.assertIn("Insufficient disk space", str(ctx.exception))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
