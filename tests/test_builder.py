"""Unit tests for the two-phase build orchestrator."""

import subprocess
import sys
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from alpmbuild.assembler import PackageAssembler
from alpmbuild.builder import BuildOrchestrator, PrivilegeHelper
from alpmbuild.errors import BuildEnvironmentError, ExecutionError, VerificationError
from alpmbuild.models import PackageTree
from alpmbuild.sources import SourceFetcher


@pytest.fixture
def tree():
    tree = PackageTree()
    main = tree.main
    main.name, main.version, main.release = "foo", "1.0", "1"
    main.requires = ["glibc"]
    main.build_requires = ["gcc"]
    main.commands.prepare = ["echo prepare"]
    main.commands.build = ["echo build"]
    main.commands.check = ["echo check"]
    main.commands.install = ["echo install"]
    tree.add_subpackage("foo-docs")
    return tree


@pytest.fixture
def helper():
    helper = Mock(spec=PrivilegeHelper)
    helper.run.return_value = 0
    return helper


def orchestrator(context, database, helper, **kwargs):
    return BuildOrchestrator(
        context,
        recipe="Name: foo\n",
        fetcher=kwargs.pop("fetcher", Mock(spec=SourceFetcher)),
        assembler=kwargs.pop("assembler", Mock(spec=PackageAssembler)),
        helper=helper,
        database=database,
        **kwargs,
    )


class TestPrivilegeHelper:
    def test_runs_command_under_helper(self):
        with patch("alpmbuild.builder.subprocess.run", return_value=subprocess.CompletedProcess([], 3)) as run:
            assert PrivilegeHelper("fakeroot").run(["python", "-m", "alpmbuild.main"]) == 3
        assert run.call_args.args[0] == ["fakeroot", "--", "python", "-m", "alpmbuild.main"]

    def test_missing_helper(self):
        with patch("alpmbuild.builder.subprocess.run", side_effect=FileNotFoundError("fakeroot")):
            with pytest.raises(BuildEnvironmentError, match="fakeroot"):
                PrivilegeHelper("fakeroot").run(["true"])


class TestUnprivileged:
    def test_build_then_reexec(self, make_context, database, helper, tree):
        context = make_context(argv=["foo.spec", "--compression", "xz"])
        build = orchestrator(context, database, helper)

        with patch.object(build, "run_script") as run_script:
            assert build.run(tree) == 0

        build.fetcher.fetch_all.assert_called_once_with(tree.main)
        name, lines, cwd = run_script.call_args.args
        assert name == "build"
        assert lines == ["echo prepare", "echo build", "echo check"]
        assert cwd == context.area.build
        assert helper.run.call_args.args[0] == [
            sys.executable,
            "-m",
            "alpmbuild.main",
            "foo.spec",
            "--compression",
            "xz",
            "--fakeroot",
        ]
        assert context.area.sources.is_dir()

    def test_helper_failure(self, context, database, helper, tree):
        helper.run.return_value = 1
        build = orchestrator(context, database, helper)
        with patch.object(build, "run_script"):
            with pytest.raises(ExecutionError, match="exit status 1"):
                build.run(tree)

    def test_exclusive_arch_mismatch(self, context, database, helper, tree):
        tree.main.exclusive_arch = ["not-a-real-arch"]
        build = orchestrator(context, database, helper)
        with pytest.raises(VerificationError, match="cannot be built"):
            build.run(tree)
        helper.run.assert_not_called()

    def test_exclusive_arch_match(self, context, database, helper, tree):
        tree.main.exclusive_arch = [context.arch]
        build = orchestrator(context, database, helper)
        with patch.object(build, "run_script"):
            assert build.run(tree) == 0


class TestMissingDependencies:
    def test_nothing_missing(self, context, database, helper, tree):
        build = orchestrator(context, database, helper, prompt=Mock())
        assert build.install_missing_dependencies(tree) is True
        database.missing_dependencies.assert_called_once_with(["glibc", "gcc"])
        build.prompt.assert_not_called()

    def test_install(self, context, database, helper, tree):
        database.missing_dependencies.return_value = ["gcc"]
        build = orchestrator(context, database, helper, prompt=Mock(return_value="i"))
        with patch("alpmbuild.builder.subprocess.run", return_value=subprocess.CompletedProcess([], 0)) as run:
            assert build.install_missing_dependencies(tree) is True
        assert run.call_args.args[0] == ["pkexec", "pacman", "-S", "gcc"]

    def test_failed_install_aborts(self, context, database, helper, tree):
        database.missing_dependencies.return_value = ["gcc"]
        build = orchestrator(context, database, helper, prompt=Mock(return_value="i"))
        with patch("alpmbuild.builder.subprocess.run", return_value=subprocess.CompletedProcess([], 1)):
            with pytest.raises(BuildEnvironmentError, match="without dependencies"):
                build.install_missing_dependencies(tree)

    def test_list_stops_the_build(self, context, database, helper, tree):
        database.missing_dependencies.return_value = ["gcc"]
        build = orchestrator(context, database, helper, prompt=Mock(return_value="l"))
        assert build.run(tree) == 0
        build.fetcher.fetch_all.assert_not_called()

    @pytest.mark.parametrize("answer", ["a", "", "nope"])
    def test_abort(self, context, database, helper, tree, answer):
        database.missing_dependencies.return_value = ["gcc"]
        build = orchestrator(context, database, helper, prompt=Mock(return_value=answer))
        with pytest.raises(BuildEnvironmentError):
            build.install_missing_dependencies(tree)

    def test_ignore_deps(self, make_context, database, helper, tree):
        database.missing_dependencies.return_value = ["gcc"]
        build = orchestrator(make_context(ignore_deps=True), database, helper)
        with patch.object(build, "run_script"):
            assert build.run(tree) == 0
        database.missing_dependencies.assert_not_called()


class TestPrivileged:
    def test_install_and_assemble(self, make_context, database, helper, tree, tmp_path):
        context = make_context(privileged=True)
        (context.area.build / "foo-1.0").mkdir(parents=True)
        build = orchestrator(context, database, helper)

        with patch.object(build, "run_script") as run_script:
            assert build.run(tree) == 0

        name, lines, cwd = run_script.call_args.args
        assert (name, lines) == ("install", ["echo install"])
        assert cwd == context.area.build / "foo-1.0"
        assembled = [call.args[0] for call in build.assembler.assemble.call_args_list]
        assert assembled == [tree.get_subpackage("foo-docs"), tree.main]
        build.assembler.assemble_source_package.assert_called_once_with(Path(tmp_path / "foo.spec"))
        helper.run.assert_not_called()

    def test_missing_build_subdirectory(self, make_context, database, helper, tree):
        context = make_context(privileged=True, source_package=False)
        build = orchestrator(context, database, helper)
        with patch.object(build, "run_script") as run_script:
            build.run(tree)
        assert run_script.call_args.args[2] == context.area.build
        build.assembler.assemble_source_package.assert_not_called()


class TestRunScript:
    def test_successful_script(self, context, database, helper, tmp_path):
        build = orchestrator(context, database, helper)
        marker = tmp_path / "marker"
        build.run_script("build", ['echo "$BUILDROOT" > ' + str(marker)], tmp_path)
        assert marker.read_text().strip() == str(context.area.package_root)

    def test_failing_script(self, context, database, helper, tmp_path):
        build = orchestrator(context, database, helper)
        with pytest.raises(ExecutionError, match="build script failed with exit status 3"):
            build.run_script("build", ["exit 3"], tmp_path)

    def test_hidden_output(self, make_context, database, helper, tmp_path):
        build = orchestrator(make_context(hide_command_output=True), database, helper)
        with patch("alpmbuild.builder.subprocess.run", return_value=subprocess.CompletedProcess([], 0)) as run:
            build.run_script("install", ["true"], tmp_path)
        assert run.call_args.kwargs["stdout"] is subprocess.DEVNULL
        assert run.call_args.args[0][:2] == ["/bin/sh", "-e"]

    def test_empty_script_is_not_run(self, context, database, helper, tmp_path):
        build = orchestrator(context, database, helper)
        with patch("alpmbuild.builder.subprocess.run") as run:
            build.run_script("check", [], tmp_path)
        run.assert_not_called()
