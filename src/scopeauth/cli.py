"""scopeauth CLI - inspect providers, tokens and settings."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import UTC, datetime

import click
import structlog
from rich.console import Console
from rich.table import Table

from scopeauth.auth.oidc import ProviderEndpoints, fetch_discovery_document
from scopeauth.auth.tokens import check_expiry, decode_unverified, token_identity
from scopeauth.core.config import AuthSettings
from scopeauth.errors import AuthenticationError

console = Console()


def _configure_logging(log_level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
    )


def _format_timestamp(value: object) -> str:
    if not isinstance(value, (int, float)):
        return str(value)
    return datetime.fromtimestamp(value, UTC).isoformat()


@click.group()
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
    help="Log level (default: warning)",
)
def main(log_level: str):
    """scopeauth - scoped OAuth2/OIDC authentication tools.

    Examples:

        scopeauth discover https://mycompany.okta.com

        scopeauth decode eyJhbGciOi...

        scopeauth config --config scopeauth.yaml
    """
    _configure_logging(log_level)


@main.command()
@click.argument("issuer")
@click.option("--timeout", "-t", type=float, default=10.0, help="Request timeout in seconds")
@click.option("--json", "json_output", is_flag=True, help="Output the raw discovery document")
def discover(issuer: str, timeout: float, json_output: bool):
    """Fetch an issuer's OpenID configuration and show its endpoints."""
    try:
        document = asyncio.run(fetch_discovery_document(issuer, timeout=timeout))
        endpoints = ProviderEndpoints.from_discovery(document)
    except AuthenticationError as e:
        console.print(f"[red]Discovery failed:[/red] {e}")
        sys.exit(1)

    if json_output:
        console.print(json.dumps(document, indent=2))
        return

    table = Table(title=f"OIDC provider: {endpoints.issuer or issuer}")
    table.add_column("Endpoint", style="cyan")
    table.add_column("URL")
    table.add_row("authorization", endpoints.authorization_endpoint)
    table.add_row("token", endpoints.token_endpoint)
    table.add_row("userinfo", endpoints.userinfo_endpoint or "-")
    table.add_row("jwks", endpoints.jwks_uri or "-")
    table.add_row("end_session", endpoints.end_session_endpoint or "-")
    console.print(table)


@main.command()
@click.argument("token")
def decode(token: str):
    """Show a JWT's claims without verifying its signature."""
    try:
        claims = decode_unverified(token)
    except AuthenticationError as e:
        console.print(f"[red]Could not decode token:[/red] {e}")
        sys.exit(1)

    console.print(json.dumps(dict(claims), indent=2, sort_keys=True))
    console.print(f"\n[bold]Identity:[/bold] {token_identity(claims) or '[red]none[/red]'}")
    if "exp" in claims:
        console.print(f"[bold]Expires:[/bold] {_format_timestamp(claims['exp'])}")
    try:
        check_expiry(claims)
        console.print("[bold]Status:[/bold] [green]valid[/green]")
    except AuthenticationError as e:
        console.print(f"[bold]Status:[/bold] [red]{e}[/red]")


@main.command()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
def config(config_file: str | None):
    """Show the effective settings (file, then SCOPEAUTH_* environment)."""
    try:
        settings = AuthSettings.from_file(config_file) if config_file else AuthSettings()
    except (ValueError, FileNotFoundError) as e:
        console.print(f"[red]Failed to load config: {e}[/red]")
        sys.exit(1)

    table = Table(title="scopeauth settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in settings.to_display_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@main.command()
def version():
    """Show version information."""
    from scopeauth import __version__

    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


if __name__ == "__main__":
    main()
