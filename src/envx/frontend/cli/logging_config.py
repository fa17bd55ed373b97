"""Lightweight logging setup for the CLI."""

import logging
import sys


def configure_logging(level: int = logging.WARNING) -> None:
    # stdout carries command output (decrypted files, values), so logs go to stderr
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
