"""
cardledger/cli/__init__.py

cardledger CLI: root Click command group.

Registered in pyproject.toml as:

    [project.scripts]
    cardledger = "cardledger.cli:cli"

Adding a new command:
    1. Create cardledger/cli/your_command.py with a @click.command()
    2. Import it here
    3. cli.add_command(your_command)
"""

from pathlib import Path
from typing import Optional

import click

from cardledger.cli.commands import (
    caution_command,
    dismiss_command,
    init_command,
    keygen_command,
    log_command,
    record_command,
    register_command,
    whoami_command,
)
from cardledger.cli.verify import verify_command
from cardledger.config import configure_logging, load_config
from cardledger.core.exceptions import ConfigError


@click.group()
@click.version_option(package_name="cardledger")
@click.option(
    "--config", "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="YAML config file (journal, key, log_level).",
)
@click.option(
    "--journal",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Journal file. Overrides config and CARDLEDGER_JOURNAL.",
)
@click.option(
    "--key",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="PEM key of the calling principal. Overrides config and CARDLEDGER_KEY.",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Log at INFO level.")
@click.pass_context
def cli(
    ctx:         click.Context,
    config_file: Optional[Path],
    journal:     Optional[Path],
    key:         Optional[Path],
    verbose:     bool,
) -> None:
    """
    cardledger: tamper-evident record of cautions and dismissals.

    \b
    Quick start:
      cardledger init
      cardledger register alice
      cardledger caution alice
      cardledger record alice
      cardledger verify .cardledger/journal.jsonl
    """
    try:
        config = load_config(
            config_file,
            overrides={
                "journal":   journal,
                "key":       key,
                "log_level": "INFO" if verbose else None,
            },
        )
    except ConfigError as exc:
        raise click.UsageError(str(exc)) from exc

    configure_logging(config.log_level)
    ctx.obj = config


cli.add_command(keygen_command)
cli.add_command(whoami_command)
cli.add_command(init_command)
cli.add_command(register_command)
cli.add_command(caution_command)
cli.add_command(dismiss_command)
cli.add_command(record_command)
cli.add_command(log_command)
cli.add_command(verify_command)
