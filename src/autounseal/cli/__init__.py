"""
autounseal CLI.

Entry point: autounseal.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="autounseal")
def main():
    """autounseal: keep a Vault fleet initialized and unsealed."""


from .controller import register_controller_commands
from .status import register_status_commands

register_controller_commands(main)
register_status_commands(main)
