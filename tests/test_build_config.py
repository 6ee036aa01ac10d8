import dataclasses
import io
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

import build_config
from build_errors import ValidationError


class ResolveConfigurationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.home = Path("/home/builder")

    def resolve(self, *argv: str, cpu_count: int = 8) -> build_config.Configuration:
        return build_config.resolve_configuration(list(argv), home=self.home, cpu_count=cpu_count)

    def test_defaults(self) -> None:
        config = self.resolve()

        self.assertEqual(build_config.DEFAULT_REPO, config.repo_url)
        self.assertEqual("master", config.branch)
        self.assertFalse(config.with_rust)
        self.assertFalse(config.static_build)
        self.assertFalse(config.clean_build)
        self.assertFalse(config.install_after_build)
        self.assertEqual(8, config.jobs)
        self.assertEqual(self.home / "lnav-src", config.source_dir)
        self.assertEqual(self.home / "lnav-build", config.build_dir)
        self.assertEqual(self.home / "lnav-build" / "src" / "lnav", config.artifact_path)
        self.assertEqual(self.home / "lnav-build.log", config.log_path)

    def test_all_options(self) -> None:
        config = self.resolve(
            "--repo",
            "https://example.com/lnav.git",
            "--branch",
            "feature",
            "--with-rust",
            "--static",
            "--clean",
            "--install",
            "--jobs",
            "3",
        )

        self.assertEqual("https://example.com/lnav.git", config.repo_url)
        self.assertEqual("feature", config.branch)
        self.assertTrue(config.with_rust)
        self.assertTrue(config.static_build)
        self.assertTrue(config.clean_build)
        self.assertTrue(config.install_after_build)
        self.assertEqual(3, config.jobs)

    def test_jobs_falls_back_when_cpu_count_unknown(self) -> None:
        with mock.patch("build_config.os.cpu_count", return_value=None):
            config = build_config.resolve_configuration([], home=self.home)
        self.assertEqual(build_config.FALLBACK_JOBS, config.jobs)

    def test_configuration_is_immutable(self) -> None:
        config = self.resolve()
        with self.assertRaises(dataclasses.FrozenInstanceError):
            config.branch = "other"  # type: ignore[misc]

    def test_jobs_zero_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.resolve("--jobs", "0")
        self.assertEqual("0", ctx.exception.token)

    def test_jobs_non_numeric_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.resolve("--jobs", "abc")
        self.assertEqual("abc", ctx.exception.token)
        self.assertIn("positive integer", str(ctx.exception))

    def test_jobs_negative_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self.resolve("--jobs=-2")

    def test_unknown_flag_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.resolve("--unknown-flag")
        self.assertEqual("--unknown-flag", ctx.exception.token)
        self.assertIn("--unknown-flag", str(ctx.exception))

    def test_abbreviated_flag_is_not_guessed(self) -> None:
        with self.assertRaises(ValidationError):
            self.resolve("--bra", "dev")

    def test_missing_value_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.resolve("--branch")
        self.assertEqual("--branch", ctx.exception.token)

    def test_jobs_without_value_names_flag(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.resolve("--jobs")
        self.assertEqual("--jobs", ctx.exception.token)

    def test_value_given_to_switch_names_flag(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.resolve("--static=1")
        self.assertEqual("--static", ctx.exception.token)

    def test_empty_branch_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.resolve("--branch", "")
        self.assertEqual("--branch", ctx.exception.token)

    def test_help_exits_zero(self) -> None:
        buffer = io.StringIO()
        with redirect_stdout(buffer), self.assertRaises(SystemExit) as ctx:
            self.resolve("--help")

        self.assertEqual(0, ctx.exception.code)
        self.assertIn("--with-rust", buffer.getvalue())
        self.assertIn("--jobs", buffer.getvalue())


class DescribeTests(unittest.TestCase):
    def test_describe_lists_flags(self) -> None:
        config = build_config.resolve_configuration(["--static"], home=Path("/h"), cpu_count=2)
        rows = dict(build_config.describe(config))

        self.assertEqual("Yes", rows["Static build"])
        self.assertEqual("No", rows["With Rust"])
        self.assertEqual("2", rows["Parallel jobs"])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
