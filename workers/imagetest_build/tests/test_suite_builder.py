"""Tests for building one suite across the platform matrix."""
from pathlib import Path

import pytest

from imagetest_build.core.suite_builder import SuiteBuilder
from imagetest_build.core.suites import Suite
from imagetest_build.io.schema import BuildFlag, StepStatus, SuiteStatus
from imagetest_build.policy.platforms import HOST_AMD64, HOST_ARM64, WINDOWS_386, WINDOWS_AMD64
from imagetest_build.policy.profile import BuildProfile


@pytest.fixture
def builder(fake_toolchain, output_dir: Path) -> SuiteBuilder:
    output_dir.mkdir()
    return SuiteBuilder(fake_toolchain, BuildProfile.v0(), output_dir)


def _suite(suite_root: Path, name: str) -> Suite:
    return Suite(name=name, source_path=suite_root / "test_suites" / name)


class TestSuiteBuilderSuccess:

    def test_all_targets(self, builder, suite_root, output_dir):
        record = builder.build(_suite(suite_root, "disk"))

        assert record.status == SuiteStatus.SUCCESS
        assert sorted(p.name for p in output_dir.iterdir()) == [
            "disk.amd64.test", "disk.arm64.test", "disk32.exe", "disk64.exe", "disk_tests.txt",
        ]
        assert [(s.step, s.target) for s in record.steps] == [
            ("compile", "native/amd64"),
            ("list", None),
            ("relocate", "native/amd64"),
            ("compile", "native/arm64"),
            ("relocate", "native/arm64"),
            ("compile", "windows/amd64"),
            ("relocate", "windows/amd64"),
            ("compile", "windows/386"),
            ("relocate", "windows/386"),
        ]

    def test_binaries_moved_out_of_source_tree(self, builder, suite_root):
        builder.build(_suite(suite_root, "disk"))
        src = suite_root / "test_suites" / "disk"
        assert not list(src.glob("*.test*"))

    def test_manifest_lists_native_tests(self, builder, suite_root, output_dir):
        record = builder.build(_suite(suite_root, "cvm"))
        assert (output_dir / "cvm_tests.txt").read_text() == (
            "TestSEVEnabled\nTestSEVSNPEnabled\nTestTDXEnabled\nTestLiveMigrate\n"
        )
        assert record.manifest.test_count == 4

    def test_manifest_written_verbatim(self, builder, fake_toolchain, suite_root, output_dir):
        fake_toolchain.listings["disk"] = "TestB\r\nTestA\r\n"
        builder.build(_suite(suite_root, "disk"))
        assert (output_dir / "disk_tests.txt").read_bytes() == b"TestB\r\nTestA\r\n"

    def test_rebuild_identical_manifest(self, builder, suite_root, output_dir):
        builder.build(_suite(suite_root, "disk"))
        first = (output_dir / "disk_tests.txt").read_bytes()
        builder.build(_suite(suite_root, "disk"))
        assert (output_dir / "disk_tests.txt").read_bytes() == first

    def test_missing_windows_binaries_tolerated(self, builder, fake_toolchain, suite_root, output_dir):
        fake_toolchain.no_output.add(("packagevalidation", WINDOWS_AMD64.label))
        fake_toolchain.no_output.add(("packagevalidation", WINDOWS_386.label))

        record = builder.build(_suite(suite_root, "packagevalidation"))

        assert record.status == SuiteStatus.SUCCESS
        assert not (output_dir / "packagevalidation64.exe").exists()
        assert not (output_dir / "packagevalidation32.exe").exists()
        windows = [s for s in record.steps if s.target == "windows/amd64"]
        assert len(windows) == 1
        assert windows[0].flags == [BuildFlag.NO_ARTIFACT_TOLERATED]
        assert windows[0].status == StepStatus.SUCCESS

    def test_relocated_artifacts_described(self, builder, suite_root):
        record = builder.build(_suite(suite_root, "disk"))
        relocated = [s for s in record.steps if s.step == "relocate"]
        assert [s.artifact.name for s in relocated] == [
            "disk.amd64.test", "disk.arm64.test", "disk64.exe", "disk32.exe",
        ]
        # The fabricated host binaries are not ELF; Windows outputs are not inspected.
        assert relocated[0].flags == [BuildFlag.NON_ELF_OUTPUT]
        assert relocated[2].flags == []


class TestSuiteBuilderFailures:
    """Every fatal step stops the suite where it happened."""

    def test_arm64_compile_failure(self, builder, fake_toolchain, suite_root, output_dir):
        fake_toolchain.fail("disk", HOST_ARM64, "# disk\n./disk_test.go:9:2: undefined: foo\n")

        record = builder.build(_suite(suite_root, "disk"))

        assert record.status == SuiteStatus.FAILED
        assert record.failed_step.target == "native/arm64"
        assert "undefined: foo" in record.failed_step.diagnostics
        assert (output_dir / "disk.amd64.test").exists()
        assert not (output_dir / "disk.arm64.test").exists()
        assert ("disk", WINDOWS_AMD64.label) not in fake_toolchain.ops("compile")

    def test_native_without_output_is_fatal(self, builder, fake_toolchain, suite_root):
        fake_toolchain.no_output.add(("disk", HOST_AMD64.label))
        record = builder.build(_suite(suite_root, "disk"))
        assert record.status == SuiteStatus.FAILED
        assert record.failed_step.flags == [BuildFlag.NO_ARTIFACT]
        assert fake_toolchain.ops("list") == []

    def test_windows_compile_failure_is_fatal(self, builder, fake_toolchain, suite_root, output_dir):
        fake_toolchain.fail("disk", WINDOWS_AMD64)
        record = builder.build(_suite(suite_root, "disk"))
        assert record.status == SuiteStatus.FAILED
        assert record.failed_step.flags == [BuildFlag.BUILD_FAILED]
        assert not (output_dir / "disk32.exe").exists()

    def test_listing_failure(self, builder, fake_toolchain, suite_root, output_dir):
        fake_toolchain.list_failures.add("disk")
        record = builder.build(_suite(suite_root, "disk"))
        assert record.failed_step.step == "list"
        assert record.failed_step.flags == [BuildFlag.LIST_FAILED]
        assert not (output_dir / "disk_tests.txt").exists()
        assert not (output_dir / "disk.amd64.test").exists()

    def test_empty_listing(self, builder, fake_toolchain, suite_root, output_dir):
        fake_toolchain.listings["disk"] = ""
        record = builder.build(_suite(suite_root, "disk"))
        assert record.failed_step.flags == [BuildFlag.EMPTY_MANIFEST]
        assert not (output_dir / "disk_tests.txt").exists()
