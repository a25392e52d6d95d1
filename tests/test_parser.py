"""Unit tests for the recipe parser."""

import logging
import textwrap

import pytest
from hypothesis import given
from hypothesis import strategies as st

from alpmbuild.errors import ParseError
from alpmbuild.lint import NameLinter
from alpmbuild.models import PackageDefinition
from alpmbuild.parser import SpecParser

FOO_SPEC = textwrap.dedent("""\
    Name: foo
    Version: 1.0
    Release: 1
    Summary: A test package
    License: MIT
    URL: https://example.com/foo
    Requires: glibc bash
    BuildRequires: gcc make
    Recommends: python
    Source0: https://example.com/foo-%{version}.tar.gz with sha256 abc123
    Patch0: fix.patch

    #!alpmbuild ReasonFor python: Needed for the helper scripts

    %description
    Foo does things.

    %package docs
    Summary: Documentation for foo

    %prep
    %setup -q
    %patch0 -p1

    %build
    make

    %install
    make DESTDIR=%{buildroot} install

    %files
    /usr/bin/foo
    # shipped by default
    %config /etc/foo.conf

    %files docs
    %{_docdir}/foo

    %post_install -n foo-docs
    echo installed

    %changelog
    * Mon Jan 01 2024 Someone - 1.0-1
    - Initial package
""")


@pytest.fixture
def parser(context, database):
    return SpecParser(context, NameLinter(database))


def header(*lines: str) -> str:
    return "\n".join(["Name: foo", "Version: 1.0", "Release: 1", *lines]) + "\n"


class TestFullRecipe:
    def test_identity(self, parser):
        main = parser.parse(FOO_SPEC).main
        assert (main.name, main.version, main.release, main.epoch) == ("foo", "1.0", "1", "")
        assert main.summary == "A test package"
        assert main.license == "MIT"
        assert main.url == "https://example.com/foo"

    def test_dependencies(self, parser):
        main = parser.parse(FOO_SPEC).main
        assert main.requires == ["glibc", "bash"]
        assert main.build_requires == ["gcc", "make"]
        assert main.recommends == ["python"]
        assert main.reasons == {"python": "Needed for the helper scripts"}

    def test_sources_and_patches(self, parser):
        main = parser.parse(FOO_SPEC).main
        assert main.sources[0].url == "https://example.com/foo-1.0.tar.gz"
        assert main.sources[0].digests == {"sha256": "abc123"}
        assert main.sources[0].filename == "foo-1.0.tar.gz"
        assert [patch.url for patch in main.patches] == ["fix.patch"]

    def test_commands(self, parser, context):
        main = parser.parse(FOO_SPEC).main
        prepare = "\n".join(main.commands.prepare)
        assert f'tar -xf "{context.area.sources}/foo-1.0.tar.gz"' in prepare
        assert f'patch -p1 -i "{context.area.sources}/fix.patch"' in prepare
        assert main.commands.build == ["make"]
        assert main.commands.install == [f"make DESTDIR={context.area.package_root} install"]

    def test_files_and_backup(self, parser):
        main = parser.parse(FOO_SPEC).main
        assert main.files == ["/usr/bin/foo"]
        assert main.backup == ["etc/foo.conf"]

    def test_description_and_changelog_are_raw(self, parser):
        main = parser.parse(FOO_SPEC).main
        assert main.description == ["Foo does things."]
        assert main.changelog == ["* Mon Jan 01 2024 Someone - 1.0-1", "- Initial package"]

    def test_subpackage(self, parser):
        tree = parser.parse(FOO_SPEC)
        docs = tree.get_subpackage("foo-docs")
        assert docs is not None
        assert docs.is_subpackage
        assert tree.parent_of(docs) is tree.main
        assert docs.summary == "Documentation for foo"
        assert docs.files == ["/usr/share/doc/foo"]
        assert docs.scriptlets.post_install == ["echo installed"]
        # Identity is inherited only when the package is assembled
        assert docs.version == ""

    def test_nevra(self, parser):
        main = parser.parse(FOO_SPEC).main
        assert main.nevr() == "foo-1.0-1"
        assert main.nevra("x86_64") == "foo-1.0-1-x86_64"


class TestKeys:
    def test_composite_version(self, parser):
        main = parser.parse("Name: foo\nEVR: 2:1.0-1\n").main
        assert (main.epoch, main.version, main.release) == ("2", "1.0", "1")
        assert main.nevra("x86_64") == "foo-2:1.0-1-x86_64"

    def test_incomplete_composite_version(self, parser):
        with pytest.raises(ParseError, match="Invalid Epoch-Versions-Release"):
            parser.parse("Name: foo\nEpoVerRel: 1.0-1\n")

    def test_keys_are_case_insensitive(self, parser):
        main = parser.parse("NAME: foo\nversion: 1.0\n").main
        assert (main.name, main.version) == ("foo", "1.0")

    def test_unknown_key_outside_section(self, parser):
        with pytest.raises(ParseError) as exc_info:
            parser.parse(header("Verison: 1.0"))
        assert exc_info.value.line_number == 4
        assert exc_info.value.hint == "Did you mean to use Version:?"

    def test_unknown_key_inside_section_is_content(self, parser):
        main = parser.parse(header("%build", "Note: this is a shell line")).main
        assert main.commands.build == ["Note: this is a shell line"]

    def test_line_continuation(self, parser):
        main = parser.parse(header("Requires: glibc \\", "    bash")).main
        assert main.requires == ["glibc", "bash"]

    def test_crlf_line_endings(self, parser):
        main = parser.parse("Name: foo\r\nVersion: 1.0\r\n").main
        assert main.version == "1.0"

    def test_unparseable_line(self, parser):
        with pytest.raises(ParseError, match="Could not parse line 4"):
            parser.parse(header("this is not a recipe line"))


class TestDependencyLint:
    def test_invalid_character_is_fatal(self, parser):
        with pytest.raises(ParseError) as exc_info:
            parser.parse(header("Requires: foo!bar"))
        assert exc_info.value.start == len("Requires: foo")
        assert exc_info.value.length == 1

    def test_version_constraint_is_allowed(self, parser):
        main = parser.parse(header("Requires: glibc>=2.38")).main
        assert main.requires == ["glibc>=2.38"]

    def test_unknown_dependency_warns(self, parser, caplog):
        with caplog.at_level(logging.WARNING):
            parser.parse(header("Requires: glibcc"))
        assert any("Did you mean to use glibc?" in record.getMessage() for record in caplog.records)

    def test_unknown_group_warns(self, parser, caplog):
        with caplog.at_level(logging.WARNING):
            parser.parse(header("Groups: base-devl"))
        assert any("Group base-devl does not exist" in record.getMessage() for record in caplog.records)

    def test_ignore_deps_skips_existence(self, make_context, database, caplog):
        parser = SpecParser(make_context(ignore_deps=True), NameLinter(database))
        with caplog.at_level(logging.WARNING):
            parser.parse(header("Requires: glibcc"))
        database.package_names.assert_not_called()

    def test_privileged_phase_is_quiet(self, make_context, database, caplog):
        parser = SpecParser(make_context(privileged=True), NameLinter(database))
        with caplog.at_level(logging.WARNING):
            parser.parse(header("Summary: %{nosuch}"))
        assert caplog.records == []


class TestSources:
    def test_modifiers(self, parser):
        main = parser.parse(
            header(
                "Source1: https://example.com/foo.tar.gz renamed foo-src.tar.gz "
                "signature https://example.com/foo.tar.gz.sig key ABCDEF keyserver hkps://keys.openpgp.org"
            )
        ).main
        source = main.sources[0]
        assert source.filename == "foo-src.tar.gz"
        assert source.signature_url == "https://example.com/foo.tar.gz.sig"
        assert source.gpg_keys == ["ABCDEF"]
        assert source.keyservers == ["hkps://keys.openpgp.org"]

    def test_invalid_hash_type(self, parser):
        with pytest.raises(ParseError) as exc_info:
            parser.parse(header("Source0: foo.tar.gz with sha257 abc"))
        assert exc_info.value.hint == "Did you mean to use sha256?"

    def test_incomplete_hash(self, parser):
        with pytest.raises(ParseError, match="Incomplete hash directive"):
            parser.parse(header("Source0: foo.tar.gz with sha256"))

    def test_unknown_modifier(self, parser):
        with pytest.raises(ParseError, match="Unknown source modifier"):
            parser.parse(header("Source0: foo.tar.gz renamd bar.tar.gz"))

    def test_modifier_without_value(self, parser):
        with pytest.raises(ParseError, match="Incomplete renamed directive"):
            parser.parse(header("Source0: foo.tar.gz renamed"))


class TestSections:
    def test_automatic_setup(self, parser, context):
        main = parser.parse(header()).main
        assert len(main.commands.prepare) == 1
        assert main.commands.prepare[0].startswith(f'cd "{context.area.build}"')

    def test_undeclared_subpackage_scope(self, parser):
        with pytest.raises(ParseError, match="has not been declared"):
            parser.parse(header("%files -n foo-missing", "/usr/bin/x"))

    def test_package_without_name(self, parser):
        with pytest.raises(ParseError, match="%package needs to have a name"):
            parser.parse(header("%package"))

    def test_explicit_subpackage_name(self, parser):
        tree = parser.parse(header("%package -n libfoo", "Summary: Library"))
        assert tree.get_subpackage("libfoo").summary == "Library"

    def test_empty_config_path(self, parser):
        with pytest.raises(ParseError, match="%config needs a path"):
            parser.parse(header("%files", "%config"))

    def test_config_attribute_group(self, parser):
        main = parser.parse(header("%files", "%config(noreplace) /etc/foo.conf")).main
        assert main.backup == ["etc/foo.conf"]

    def test_unclosed_config_attribute(self, parser):
        with pytest.raises(ParseError, match="Unclosed %config attribute"):
            parser.parse(header("%files", "%config(noreplace /etc/foo.conf"))

    def test_no_file_check_directive(self, parser):
        assert parser.parse(header("#!alpmbuild NoFileCheck")).check_files is False

    def test_reason_without_reason(self, parser):
        with pytest.raises(ParseError, match="No reason provided for python"):
            parser.parse(header("#!alpmbuild ReasonFor python"))

    def test_reason_without_colon(self, parser):
        with pytest.raises(ParseError, match="ReasonFor missing :") as excinfo:
            parser.parse(header("#!alpmbuild ReasonFor foo bar"))
        assert excinfo.value.hint == "Add a : after the package name"

    def test_unknown_directive_warns(self, parser, caplog):
        with caplog.at_level(logging.WARNING):
            tree = parser.parse(header("#!alpmbuild NoFilCheck"))
        assert tree.check_files is True
        message = caplog.records[0].getMessage()
        assert message.startswith("Invalid #!alpmbuild directive NoFilCheck on line 4")
        assert "Did you mean to use NoFileCheck?" in message

    def test_bare_directive_warns(self, parser, caplog):
        with caplog.at_level(logging.WARNING):
            parser.parse(header("#!alpmbuild"))
        assert "#!alpmbuild directive missing type" in caplog.text

    def test_unexpanded_macro_warns_with_suggestion(self, parser, caplog):
        with caplog.at_level(logging.WARNING):
            parser.parse(header("Summary: %{nmae}"))
        message = caplog.records[0].getMessage()
        assert message.startswith("Macro not expanded on line 4: %{nmae}")
        assert "Did you mean to use %{name}?" in message


class TestConditionals:
    def test_false_branch_is_skipped(self, parser):
        recipe = "Name: foo\n%if 1 > 2\nVersion: 1.0\n%else\nVersion: 2.0\n%endif\nRelease: 1\n"
        main = parser.parse(recipe).main
        assert main.version == "2.0"
        assert main.release == "1"

    def test_condition_on_parsed_field(self, parser):
        recipe = header("%if %{version} == 1.0", "Requires: glibc", "%endif")
        assert parser.parse(recipe).main.requires == ["glibc"]

    def test_skipped_lines_are_not_validated(self, parser):
        recipe = header("%if 0 > 1", "Bogus: key", "garbage line", "%endif")
        assert parser.parse(recipe).main.name == "foo"

    def test_nested_if_is_not_tracked(self, parser):
        recipe = header("%if 0", "%if 1", "Requires: bash", "%endif", "Requires: make", "%endif")
        assert parser.parse(recipe).main.requires == ["bash", "make"]


@given(
    name=st.from_regex(r"[a-z][a-z0-9]{0,8}", fullmatch=True),
    version=st.from_regex(r"[0-9]{1,3}\.[0-9]{1,3}", fullmatch=True),
    release=st.integers(min_value=1, max_value=99),
    epoch=st.integers(min_value=1, max_value=9),
)
def test_nevra_strings(name, version, release, epoch):
    package = PackageDefinition(name=name, version=version, release=str(release))
    assert package.nevra("x86_64") == f"{name}-{version}-{release}-x86_64"
    package.epoch = str(epoch)
    assert package.nevr() == f"{name}-{epoch}:{version}-{release}"
    assert package.package_filename("x86_64", "zst") == f"{name}-{epoch}:{version}-{release}-x86_64.pkg.tar.zst"
