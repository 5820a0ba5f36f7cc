"""CLI for dav-mcp: run the stdio server and inspect its tool catalogue.

stdout belongs to the protocol while ``serve`` runs; everything the CLI
prints for that command goes to stderr.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import click
from dotenv import load_dotenv

from dav_mcp import __version__
from dav_mcp.config import ConfigError, ServerConfig, load_config
from dav_mcp.core.logging import configure_logging

logger = logging.getLogger(__name__)


def _load_config_or_exit() -> ServerConfig:
    try:
        return load_config()
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """dav-mcp: CalDAV/CardDAV tools for MCP clients over stdio."""
    load_dotenv()


@cli.command()
def serve() -> None:
    """Run the MCP server on stdin/stdout until a signal or EOF."""
    from dav_mcp.daemon import run_server

    config = _load_config_or_exit()
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
        server_name=config.name,
    )
    try:
        exit_code = asyncio.run(run_server(config))
    except Exception:
        logger.exception("Server failed before it could shut down cleanly")
        exit_code = 1
    sys.exit(exit_code)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print the protocol view of the catalogue")
def tools(as_json: bool) -> None:
    """List the tools the server exposes."""
    from dav_mcp.dav.client import DavClient
    from dav_mcp.tools import build_registry

    registry = build_registry(DavClient())
    if as_json:
        payload = [
            tool.to_mcp().model_dump(by_alias=True, mode="json", exclude_none=True)
            for tool in registry.list()
        ]
        click.echo(json.dumps(payload, indent=2))
        return

    click.echo(f"{'Name':<20} {'Category':<10} {'Session':<8} {'Description'}")
    click.echo("-" * 80)
    for tool in registry.list():
        session = "yes" if tool.requires_session else "no"
        summary = tool.description.splitlines()[0]
        click.echo(f"{tool.name:<20} {tool.category:<10} {session:<8} {summary}")


@cli.command()
def health() -> None:
    """Print the health snapshot without starting the transport."""
    from dav_mcp.daemon import DavMcpServer

    config = _load_config_or_exit()
    server = DavMcpServer(config, install_signal_handlers=False)
    click.echo(json.dumps(server.health(), indent=2))
