"""Command line tasks (invoke)."""

from invoke import Collection, Program

from .. import __version__
from ..logging_config import configure_structured_logging
from . import tasks

namespace = Collection.from_module(tasks)
program = Program(namespace=namespace, version=__version__)


def main() -> None:
    """Entry point for the ``progresstracker`` command."""
    configure_structured_logging()
    program.run()
