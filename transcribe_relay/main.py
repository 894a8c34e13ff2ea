"""Typer CLI entrypoint for transcribe-relay."""

import asyncio
import json
import logging
from pathlib import Path

import typer

from transcribe_relay.config import Config, ConfigError, load_config
from transcribe_relay.server import RelayServer

app = typer.Typer(help="Relay live audio to Amazon Transcribe with speaker labels")

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _merge_config_overrides(
    cfg: Config,
    *,
    host: str | None = None,
    port: int | None = None,
    region: str | None = None,
) -> Config:
    """Apply CLI overrides to configuration.

    CLI options take precedence over config file and environment values.

    Args:
        cfg: Base configuration
        host: Override listen host
        port: Override listen port
        region: Override AWS region

    Returns:
        Updated Config instance
    """
    if host is not None:
        logger.debug("Overriding host to '%s'", host)
        cfg.server.host = host

    if port is not None:
        logger.debug("Overriding port to %d", port)
        cfg.server.port = port

    if region is not None:
        logger.debug("Overriding region to '%s'", region)
        cfg.aws.region = region

    return cfg


@app.command()
def run(
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
    host: str | None = typer.Option(None, "--host", help="Override listen host"),
    port: int | None = typer.Option(None, "--port", "-p", help="Override listen port"),
    region: str | None = typer.Option(None, "--region", help="Override AWS region"),
) -> None:
    """Run the relay server."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        if cfg.general.verbose and not verbose:
            logging.getLogger().setLevel(logging.DEBUG)
        cfg = _merge_config_overrides(cfg, host=host, port=port, region=region)
        cfg.validate()
        logger.info("Configuration validated successfully")

        server = RelayServer(cfg, config_path=config)
        asyncio.run(server.serve())

    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.info("Relay interrupted by user")
        raise typer.Exit(0)
    except Exception as e:
        logger.error("Unexpected error: %s", e, exc_info=True)
        raise typer.Exit(1)


@app.command()
def check_config(
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of text"
    ),
) -> None:
    """Validate configuration and print it with credentials masked."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        cfg.validate()
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)

    data = cfg.redacted()
    if json_output:
        typer.echo(json.dumps(data, indent=2))
        return

    typer.echo("Configuration OK:")
    for section, values in data.items():
        typer.echo(f"  [{section}]")
        for key, value in values.items():
            typer.echo(f"    {key} = {value}")


if __name__ == "__main__":
    app()
