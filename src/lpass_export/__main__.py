"""Command line entry point: ``lpass-export`` / ``python -m lpass_export``."""

import argparse
import logging
import sys
from typing import List, Optional

from dotenv import find_dotenv, load_dotenv

from . import __version__
from .config import COLOR_MODES, DEFAULT_INDEX_NAME, SNIFFERS, USERNAME_ENV, RunConfiguration
from .errors import ConfigError, ExportError
from .log import setup_logging
from .orchestrator import ExportOrchestrator, RunSummary, check_dependencies
from .vault.lpass import LpassClient

logger = logging.getLogger("lpass_export.cli")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 3

EPILOG = """\
examples:
  # export items for myusername to /tmp/lpass as encrypted JSON
  lpass-export -d -f -j -s -p passphrase.txt -u myusername /tmp/lpass

  # write only an index, then pack the directory
  lpass-export -X -i -z lpass.tar.gz -u myusername /tmp/lpass

decrypting (-e openssl, the default engine):
  openssl enc -d -aes-256-cbc -pbkdf2 -md sha256 -pass file:passphrase.txt -in FILE.enc
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lpass-export",
        description="Export LastPass items and attachments to a directory, optionally encrypted.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("output_dir", metavar="dir", help="directory to write output files")
    parser.add_argument(
        "-u", "--username",
        help=f"login to LastPass using USERNAME (default: ${USERNAME_ENV})",
    )
    parser.add_argument(
        "-c", "--color", choices=COLOR_MODES, default="never",
        help="color option for lpass and log output; default: never",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="output debug information")
    parser.add_argument("-f", "--force", action="store_true", help="overwrite output files that already exist")
    parser.add_argument("-j", "--json", action="store_true", help="write items using JSON format")
    parser.add_argument("-q", "--quiet", action="store_true", help="do not display status information")
    parser.add_argument("-s", "--stay-logged-in", action="store_true", help="stay logged in after the export")
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")

    index = parser.add_argument_group("index")
    index.add_argument("-i", "--index", action="store_true", help="write an id|name|fullname index file")
    index.add_argument(
        "-n", "--index-name", default=DEFAULT_INDEX_NAME,
        help=f"index file name; default: {DEFAULT_INDEX_NAME}",
    )
    index.add_argument("-S", "--sort-index", action="store_true", help="sort index rows by item id")
    index.add_argument(
        "-X", "--skip-items", action="store_true",
        help="do not export items (use with -i to only write the index)",
    )

    crypto = parser.add_argument_group("encryption")
    crypto.add_argument(
        "-p", "--passphrase-file", metavar="FILE",
        help="encrypt output; the first line of FILE is the passphrase",
    )
    crypto.add_argument(
        "-e", "--encryption-program", choices=("openssl", "gpg"), default="openssl",
        help="encryption engine; default: openssl",
    )
    crypto.add_argument(
        "-a", "--algorithm", metavar="ALGO",
        help="cipher; default: aes-256-cbc (openssl) or AES256 (gpg)",
    )
    crypto.add_argument(
        "-k", "--kdf",
        help="key derivation function for openssl: pbkdf2, pbkdf2-sha512; default: pbkdf2",
    )
    crypto.add_argument(
        "-x", "--encrypted-extension", metavar="EXT",
        help="extension appended to encrypted files; default: enc",
    )

    run = parser.add_argument_group("run")
    run.add_argument("-z", "--archive", metavar="FILE", help="pack the output directory into FILE (tar+gzip)")
    run.add_argument("-w", "--workers", type=int, default=1, help="items exported in parallel; default: 1")
    run.add_argument(
        "--sniffer", choices=SNIFFERS, default="signature",
        help="content sniffer for unnamed attachments; default: signature",
    )
    run.add_argument("--event-log", metavar="FILE", help="append a JSON line per exported artifact to FILE")
    return parser


def report(summary: RunSummary) -> None:
    logger.info(
        "Items: %d written, %d skipped, %d failed. Attachments: %d written, %d skipped, %d failed.",
        summary.items_written,
        summary.items_skipped,
        summary.items_failed,
        summary.attachments_written,
        summary.attachments_skipped,
        summary.attachments_failed,
    )
    if summary.failed:
        logger.warning("%d artifact(s) failed; re-run to retry them.", summary.failed)


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    parser = build_parser()
    if not argv:
        parser.print_help(sys.stderr)
        return EXIT_OK

    load_dotenv(find_dotenv(usecwd=True))
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, quiet=args.quiet, color=args.color)

    config = RunConfiguration.from_args(args)
    client = LpassClient(color=config.color)
    orchestrator = ExportOrchestrator(config, client, dependency_check=check_dependencies)

    try:
        summary = orchestrator.run()
    except ConfigError as exc:
        logger.error("%s", exc)
        parser.print_usage(sys.stderr)
        return EXIT_FATAL
    except ExportError as exc:
        logger.error("%s", exc)
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.warning("Interrupted.")
        return 130

    report(summary)
    return EXIT_PARTIAL if summary.failed else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
