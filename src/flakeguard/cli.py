"""CLI interface for flakeguard"""

import logging
from pathlib import Path
from typing import Optional, Tuple

import click
import yaml

from flakeguard.application.command_runner import CommandRunner
from flakeguard.domain.errors import FlakeguardError
from flakeguard.infrastructure.config.config_manager import ConfigManager, ConfigurationError

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    logging.getLogger().setLevel(level)


def _die(message: str, verbose: bool = False, exc: Optional[Exception] = None) -> None:
    """Exit with a user-friendly error message"""
    if exc is not None:
        logger.error(message, exc_info=verbose)
    else:
        logger.error(message)
    raise click.ClickException(message)


def _load_config(ctx: click.Context) -> ConfigManager:
    try:
        return ConfigManager(config_path=ctx.obj.get("config_path"))
    except ConfigurationError as e:
        _die(str(e), verbose=ctx.obj.get("verbose", False), exc=e)


def _echo_output(completed) -> None:
    if completed.stdout:
        click.echo(completed.stdout, nl=False)
    if completed.stderr:
        click.echo(completed.stderr, nl=False, err=True)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to .flakeguard.yml config file",
)
@click.pass_context
def cli(ctx, verbose: bool, config: Path):
    """flakeguard - retries and polling waits for flaky test steps"""
    ctx.ensure_object(dict)
    setup_logging(verbose)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose


@cli.command("retry", context_settings={"ignore_unknown_options": True})
@click.option("--attempts", type=click.IntRange(min=1), help="Maximum attempts. Overrides config.")
@click.option("--delay", type=click.FloatRange(min=0), help="Delay before the first retry (seconds).")
@click.option("--backoff", type=click.FloatRange(min=1.0), help="Backoff multiplier (1 = fixed delay).")
@click.option("--max-delay", type=click.FloatRange(min=0), help="Cap on any single delay (seconds).")
@click.option("--jitter", type=click.FloatRange(min=0), help="Random delay added to each retry (seconds).")
@click.option(
    "--timeout",
    type=click.FloatRange(min=0),
    help="Total time budget (seconds). Replaces --attempts as the stop rule.",
)
@click.option("--command-timeout", type=click.FloatRange(min=0), help="Per-run command timeout (seconds).")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def retry_command(
    ctx,
    attempts: Optional[int],
    delay: Optional[float],
    backoff: Optional[float],
    max_delay: Optional[float],
    jitter: Optional[float],
    timeout: Optional[float],
    command_timeout: Optional[float],
    command: Tuple[str, ...],
):
    """Run COMMAND until it exits 0, retrying with backoff.

    COMMAND: command and arguments (put them after --)
    """
    verbose = ctx.obj.get("verbose", False)
    config_manager = _load_config(ctx)

    try:
        policy = config_manager.retry_policy(
            max_attempts=attempts,
            initial_delay=delay,
            backoff_multiplier=backoff,
            max_delay=max_delay,
            jitter=jitter,
            total_timeout=timeout,
            description=" ".join(command),
        )
        runner = CommandRunner(command_timeout=command_timeout)
        completed = runner.run_with_retry(command, policy)
    except (ConfigurationError, FlakeguardError) as e:
        _die(str(e), verbose=verbose, exc=e)
    except Exception as e:
        _die(f"Fatal error: {e}", verbose=verbose, exc=e)

    _echo_output(completed)


@cli.command("wait", context_settings={"ignore_unknown_options": True})
@click.option("--timeout", type=click.FloatRange(min=0), help="How long to keep polling (seconds).")
@click.option("--interval", type=click.FloatRange(min=0, min_open=True), help="Pause between checks (seconds).")
@click.option("--command-timeout", type=click.FloatRange(min=0), help="Per-check command timeout (seconds).")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def wait_command(
    ctx,
    timeout: Optional[float],
    interval: Optional[float],
    command_timeout: Optional[float],
    command: Tuple[str, ...],
):
    """Poll COMMAND until it exits 0 (e.g. wait for the app under test).

    COMMAND: command and arguments (put them after --)
    """
    verbose = ctx.obj.get("verbose", False)
    config_manager = _load_config(ctx)

    try:
        spec = config_manager.wait_spec(
            timeout=timeout,
            poll_interval=interval,
            description=f"{' '.join(command)} to succeed",
        )
        runner = CommandRunner(command_timeout=command_timeout)
        runner.wait_until_succeeds(command, spec)
    except (ConfigurationError, FlakeguardError) as e:
        _die(str(e), verbose=verbose, exc=e)
    except Exception as e:
        _die(f"Fatal error: {e}", verbose=verbose, exc=e)

    click.echo("Ready.")


@cli.command("show-config")
@click.pass_context
def show_config(ctx):
    """Print the effective configuration as YAML."""
    config_manager = _load_config(ctx)
    if config_manager.config_path:
        click.echo(f"# from {config_manager.config_path}")
    click.echo(yaml.safe_dump(config_manager.config.model_dump(), sort_keys=False), nl=False)


def main():
    """Main entry point"""
    cli(obj={})


if __name__ == "__main__":
    main()
