"""Command line entry point for alpmbuild."""

import argparse
import logging
import sys
from pathlib import Path

import yaml

from alpmbuild.builder import PRIVILEGED_FLAG, BuildOrchestrator
from alpmbuild.config import COMPRESSION_METHODS, DEFAULT_COMPRESSION, VERSION, BuildOptions, setup_logging
from alpmbuild.config_manager import ConfigManager
from alpmbuild.context import BuildContext
from alpmbuild.errors import AlpmbuildError, ParseError
from alpmbuild.output import highlight_context, prefix_width
from alpmbuild.parser import SpecParser

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured argparse.ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="alpmbuild",
        description="Build pacman packages from RPM-style specfiles.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("file", nargs="?", help="Specfile to build")
    parser.add_argument("--file", dest="file_option", metavar="FILE", help="Specfile to build")
    parser.add_argument(
        "-ba",
        dest="build_all",
        metavar="FILE",
        help="Build binary and source packages from FILE",
    )
    parser.add_argument(
        "--strict-files",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Fail when a staged file is not listed in %%files",
    )
    parser.add_argument(
        "--hide-command-output",
        action="store_true",
        help="Discard the output of build scripts",
    )
    parser.add_argument(
        "--colours",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Colour terminal output",
    )
    parser.add_argument(
        "--source-package",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Also create a source package",
    )
    parser.add_argument(
        "--ignore-deps",
        action="store_true",
        help="Skip dependency checks",
    )
    parser.add_argument(
        "--compression",
        choices=sorted(COMPRESSION_METHODS),
        default=DEFAULT_COMPRESSION,
        help="Package compression (default: %(default)s)",
    )
    parser.add_argument(
        "-D",
        "--define",
        action="append",
        default=[],
        metavar="'NAME VALUE'",
        help="Define a macro; may be repeated",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (default: $ALPMBUILD_LOG_LEVEL or INFO)",
    )
    parser.add_argument(PRIVILEGED_FLAG, dest="privileged", action="store_true", help=argparse.SUPPRESS)
    return parser


def options_from_args(args: argparse.Namespace, argv: list[str]) -> BuildOptions:
    """Translate parsed arguments into BuildOptions.

    Raises:
        ValueError: If no specfile was given
    """
    recipe = args.build_all or args.file_option or args.file
    if not recipe:
        raise ValueError("No specfile given")
    return BuildOptions(
        recipe=recipe,
        strict_files=args.strict_files,
        hide_command_output=args.hide_command_output,
        colours=args.colours,
        source_package=args.source_package or bool(args.build_all),
        compression=args.compression,
        ignore_deps=args.ignore_deps,
        privileged=args.privileged,
        defines=args.define,
        argv=[arg for arg in argv if arg != PRIVILEGED_FLAG],
    )


def report(error: AlpmbuildError) -> None:
    """Log a fatal error with its highlighted context and hint."""
    indent = prefix_width(logging.ERROR)
    if isinstance(error, ParseError) and error.line:
        logger.error(
            f"{error}\n" + highlight_context(error.line, error.start, error.length, error.hint, indent)
        )
    elif error.hint:
        logger.error(f"{error}\n\n{' ' * indent}{error.hint}")
    else:
        logger.error(str(error))


def main(argv: list[str] | None = None) -> int:
    """Run alpmbuild.

    Args:
        argv: Command line arguments, defaults to sys.argv[1:]

    Returns:
        Exit status
    """
    argv = sys.argv[1:] if argv is None else argv
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level, colours=args.colours)

    try:
        options = options_from_args(args, argv)
    except ValueError as e:
        parser.print_usage(sys.stderr)
        logger.error(str(e))
        return 2

    try:
        settings = ConfigManager().load()
        context = BuildContext(options, settings)

        recipe_path = Path(options.recipe)
        if not options.privileged:
            logger.info(f"Reading specfile from {recipe_path}...")
        recipe = recipe_path.read_text(encoding="utf-8")

        tree = SpecParser(context).parse(recipe)
        return BuildOrchestrator(context, recipe).run(tree)

    except AlpmbuildError as e:
        report(e)
        return 1
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
