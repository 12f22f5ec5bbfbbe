"""domainedge CLI - Command line interface."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import Any

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from domainedge import __version__

console = Console()

BANNER = """
     _                       _                 _
  __| | ___  _ __ ___   __ _(_)_ __   ___  __| | __ _  ___
 / _` |/ _ \\| '_ ` _ \\ / _` | | '_ \\ / _ \\/ _` |/ _` |/ _ \\
| (_| | (_) | | | | | | (_| | | | | |  __/ (_| | (_| |  __/
 \\__,_|\\___/|_| |_| |_|\\__,_|_|_| |_|\\___|\\__,_|\\__, |\\___|
                                                |___/
          Custom domains for every project page
"""


def _configure_logging(level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper())),
    )


def _print_json(data: Any) -> None:
    console.print_json(data=data)


def _fail(error: BaseException) -> None:
    from domainedge.core.exceptions import format_error_for_user

    console.print(f"[red]Error:[/red] {format_error_for_user(error)}")
    sys.exit(1)


@click.group()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
    help="Log level (default: warning, use --verbose for debug)",
)
@click.version_option(__version__, prog_name="domainedge")
@click.pass_context
def main(ctx: click.Context, config_file: str | None, verbose: bool, log_level: str):
    """domainedge - Custom domain verification and edge routing.

    Examples:

        domainedge serve

        domainedge check ourwedding.com verify-k2j4h5g6-lz8q1x2c

        domainedge propagation ourwedding.com verify-k2j4h5g6-lz8q1x2c

        domainedge domain add ourwedding.com --project-id p-42 --subdomain john-jane-2024

    All settings can also be configured via DOMAINEDGE_* environment variables.
    """
    _configure_logging("debug" if verbose else log_level)

    if config_file:
        from domainedge.core.config import (
            apply_file_config,
            clear_config,
            flatten_config,
            load_config_from_file,
        )

        try:
            raw_config = load_config_from_file(config_file)
        except (FileNotFoundError, ValueError) as e:
            console.print(f"[red]Failed to load config: {e}[/red]")
            sys.exit(1)

        # Environment variables take precedence over the file
        for name, value in apply_file_config(flatten_config(raw_config)).items():
            os.environ.setdefault(name, value)
        clear_config()
        console.print(f"Loaded config from {config_file}", style="dim")

    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file


@main.command()
@click.option("--bind", "-b", default=None, help="host:port to listen on (default from config)")
@click.option("--upstream", "-u", default=None, help="Renderer URL (default from config)")
def serve(bind: str | None, upstream: str | None):
    """Run the edge server and verification API."""
    from domainedge.core.config import get_config
    from domainedge.core.exceptions import DomainEdgeError
    from domainedge.server.app import EdgeServer, run_server

    config = get_config()
    try:
        server = EdgeServer.from_config(config)
    except DomainEdgeError as e:
        _fail(e)
        return

    if bind:
        server.bind = bind
    if upstream:
        server.proxy.upstream_url = upstream.rstrip("/")

    console.print(BANNER, style="cyan")
    console.print(f"Listening on {server.bind}", style="yellow")
    console.print(f"Upstream: {server.proxy.upstream_url}", style="dim")
    console.print(f"Store: {config.store.backend}", style="dim")
    console.print(
        f"Redirect cache: ttl {config.cache.ttl:g}s, max {config.cache.max_size} entries",
        style="dim",
    )
    console.print("Server started, press Ctrl+C to stop", style="green")

    try:
        asyncio.run(run_server(server))
    except KeyboardInterrupt:
        console.print("\nShutting down...", style="yellow")


def _verifier():
    from domainedge.core.config import get_config
    from domainedge.domains.verification import DNSVerifier

    return DNSVerifier.from_config(get_config().dns)


@main.command()
@click.argument("domain_name")
@click.argument("token")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def check(domain_name: str, token: str, json_output: bool):
    """Check the verification TXT record of a domain."""
    from domainedge.domains.validation import clean_domain

    domain_name = clean_domain(domain_name)
    verifier = _verifier()
    result = asyncio.run(verifier.verify_ownership(domain_name, token))

    if json_output:
        _print_json(result.to_dict())
        return

    record_name = verifier.verification_record_name(domain_name)
    found = "\n".join(f"  {record.value}" for record in result.records) or "  [dim]none[/dim]"
    if result.success:
        console.print(
            Panel(
                f"[green]Verification token found![/green]\n\n"
                f"[bold]Record:[/bold] {record_name}\n"
                f"[bold]Response time:[/bold] {result.response_time_ms}ms",
                title="Ownership Verified",
                border_style="green",
            )
        )
    else:
        console.print(
            Panel(
                f"[red]{result.error}[/red]\n\n"
                f"[bold]Record:[/bold] {record_name}\n"
                f"[bold]TXT values found:[/bold]\n{found}",
                title="Verification Failed",
                border_style="red",
            )
        )
        sys.exit(1)


@main.command()
@click.argument("domain_name")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def connectivity(domain_name: str, json_output: bool):
    """Check that a domain resolves to an address."""
    from domainedge.domains.validation import clean_domain

    result = asyncio.run(_verifier().check_connectivity(clean_domain(domain_name)))

    if json_output:
        _print_json(result.to_dict())
        return

    if result.success:
        addresses = ", ".join(record.value for record in result.records)
        console.print(f"[green]OK[/green] {domain_name} resolves to {addresses} ({result.response_time_ms}ms)")
    else:
        console.print(f"[red]x[/red] {result.error}")
        sys.exit(1)


@main.command()
@click.argument("domain_name")
@click.argument("token")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def propagation(domain_name: str, token: str, json_output: bool):
    """Estimate how far the verification record has propagated."""
    from domainedge.core.config import get_config
    from domainedge.domains.propagation import PropagationChecker
    from domainedge.domains.validation import clean_domain

    dns = get_config().dns
    checker = PropagationChecker(
        dns.propagation_resolvers,
        platform_name=dns.platform_name,
        timeout=min(dns.timeout, 5.0),
        threshold=dns.propagation_threshold,
    )
    status = asyncio.run(checker.check(clean_domain(domain_name), token))

    if json_output:
        _print_json(status.to_dict())
        return

    if status.propagated:
        console.print(
            f"[green]Propagated[/green] ({status.servers_found}/{status.servers_checked} resolvers see the record)"
        )
    else:
        console.print(
            f"[yellow]Propagating[/yellow] ({status.servers_found}/{status.servers_checked} resolvers), "
            f"about {status.estimated_minutes_remaining} minutes remaining"
        )


@main.command()
@click.argument("domain_name")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def records(domain_name: str, json_output: bool):
    """List A, AAAA, CNAME and TXT records of a domain."""
    from domainedge.domains.validation import clean_domain

    record_set = asyncio.run(_verifier().get_dns_records(clean_domain(domain_name)))

    if json_output:
        _print_json(record_set.to_dict())
        return

    table = Table(title=f"DNS records for {domain_name}")
    table.add_column("Type", style="cyan")
    table.add_column("Name")
    table.add_column("Value", style="green")
    table.add_column("TTL", style="dim")
    for record in [*record_set.a, *record_set.aaaa, *record_set.cname, *record_set.txt]:
        table.add_row(record.type, record.name, record.value, str(record.ttl) if record.ttl else "-")
    console.print(table)


@main.command()
def token():
    """Generate a fresh verification token."""
    from domainedge.domains.tokens import generate_verification_token

    console.print(generate_verification_token())


@main.command()
@click.argument("domain_name")
def validate(domain_name: str):
    """Validate a domain and suggest corrections."""
    from domainedge.domains.validation import suggest_domain_corrections, validate_domain

    result = validate_domain(domain_name)
    if result.is_valid:
        console.print(f"[green]OK[/green] {result.domain} is a valid custom domain")
        return

    console.print(f"[red]x[/red] {result.error}")
    suggestions = suggest_domain_corrections(domain_name)
    if suggestions:
        console.print("[yellow]Did you mean:[/yellow]")
        for suggestion in suggestions:
            console.print(f"  {suggestion}")
    sys.exit(1)


@main.group()
def config():
    """View configuration settings.

    All settings can be configured via environment variables with the
    DOMAINEDGE_ prefix.
    """
    pass


@config.command("show")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--section", "-s", help="Show only specific section (dns, cache, router, store, server)")
def config_show(json_output: bool, section: str | None):
    """Show current configuration settings."""
    from domainedge.core.config import get_config

    display = get_config().to_display_dict()

    if section:
        section = section.lower()
        if section not in display:
            console.print(f"[red]Unknown section:[/red] {section}")
            console.print(f"[dim]Available: {', '.join(display.keys())}[/dim]")
            sys.exit(1)
        display = {section: display[section]}

    if json_output:
        _print_json(display)
        return

    for section_name, settings in display.items():
        table = Table(title=section_name.title())
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        for key, value in settings.items():
            table.add_row(key, str(value) if value is not None else "[dim]None[/dim]")
        console.print(table)
        console.print()


@main.group()
def domain():
    """Manage custom domain configurations in the configured store.

    Examples:

        domainedge domain add ourwedding.com --project-id p-42 --subdomain john-jane-2024

        domainedge domain verify <domain-id>

        domainedge domain status <domain-id>

        domainedge domain remove <domain-id>
    """
    pass


def _manager():
    from domainedge.core.config import get_config
    from domainedge.server.app import EdgeServer

    return EdgeServer.from_config(get_config()).manager


async def _with_manager(action):
    manager = _manager()
    try:
        return await action(manager)
    finally:
        await manager.dispatcher.drain()
        await manager.store.close()


@domain.command("add")
@click.argument("domain_name")
@click.option("--project-id", "-p", required=True, help="Project to attach the domain to")
@click.option("--subdomain", "-s", default=None, help="Project subdomain served on the platform host")
@click.option("--no-redirect", is_flag=True, help="Keep serving the platform URL without redirecting")
@click.option("--owner-id", default=None, help="User notified when verification succeeds")
def domain_add(domain_name: str, project_id: str, subdomain: str | None, no_redirect: bool, owner_id: str | None):
    """Configure a custom domain and print the TXT record to publish."""
    from domainedge.core.exceptions import DomainEdgeError

    async def action(manager):
        record, created = await manager.configure_domain(
            project_id,
            domain_name,
            project_subdomain=subdomain,
            redirect_enabled=not no_redirect,
            owner_id=owner_id,
        )
        return record, created, manager.verifier.dns_instructions(record.custom_domain, record.verification_token)

    try:
        record, created, instructions = asyncio.run(_with_manager(action))
    except DomainEdgeError as e:
        _fail(e)
        return

    steps = "\n".join(f"  {step}" for step in instructions.instructions)
    console.print(
        Panel(
            f"[green]Domain {'registered' if created else 'updated'} successfully![/green]\n\n"
            f"[bold]Domain:[/bold] {record.custom_domain}\n"
            f"[bold]Domain ID:[/bold] {record.id}\n"
            f"[bold]Status:[/bold] Pending verification\n\n"
            f"[yellow]Configure this DNS record:[/yellow]\n\n"
            f"   Type:  {instructions.record_type}\n"
            f"   Name:  {instructions.record_name}\n"
            f"   Value: {instructions.record_value}\n\n"
            f"{steps}\n\n"
            f"After configuring DNS, run:\n"
            f"  [cyan]domainedge domain verify {record.id}[/cyan]",
            title="Domain Configuration",
            border_style="green",
        )
    )


@domain.command("verify")
@click.argument("domain_id")
@click.option("--force", is_flag=True, help="Re-check even if already verified")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def domain_verify(domain_id: str, force: bool, json_output: bool):
    """Run a verification attempt for a configured domain."""
    from domainedge.core.exceptions import DomainEdgeError

    try:
        outcome = asyncio.run(_with_manager(lambda m: m.verify_domain(domain_id, force_recheck=force)))
    except DomainEdgeError as e:
        _fail(e)
        return

    if json_output:
        _print_json(outcome.to_dict())
        return

    if outcome.success:
        console.print(f"[green]Verified[/green] {outcome.message or ''}".rstrip())
    else:
        console.print(f"[red]Verification failed:[/red] {outcome.verification_result.error}")
        sys.exit(1)


@domain.command("status")
@click.argument("domain_id")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def domain_status(domain_id: str, json_output: bool):
    """Show a domain configuration with its recent verification attempts."""
    from domainedge.core.exceptions import DomainEdgeError

    try:
        report = asyncio.run(_with_manager(lambda m: m.get_domain_status(domain_id)))
    except DomainEdgeError as e:
        _fail(e)
        return

    if json_output:
        _print_json(report.to_dict())
        return

    record = report.record
    table = Table(title=record.custom_domain)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Status", report.status.value)
    table.add_row("Attempts", f"{record.verification_attempts}/{record.max_verification_attempts}")
    table.add_row("Redirect", "enabled" if record.redirect_enabled else "disabled")
    table.add_row("Expires", record.expires_at.isoformat() if record.expires_at else "-")
    table.add_row("Last verified", record.last_verified_at.isoformat() if record.last_verified_at else "-")
    if record.error_message:
        table.add_row("Last error", record.error_message)
    console.print(table)

    if report.logs:
        logs = Table(title="Recent attempts")
        logs.add_column("#", style="dim")
        logs.add_column("Result")
        logs.add_column("Checked at", style="dim")
        logs.add_column("Error", style="red")
        for log in report.logs:
            logs.add_row(str(log.attempt), log.result, log.checked_at.isoformat(), log.error_message or "")
        console.print(logs)


@domain.command("remove")
@click.argument("domain_id")
@click.confirmation_option(prompt="Remove this domain configuration?")
def domain_remove(domain_id: str):
    """Delete a domain configuration."""
    from domainedge.core.exceptions import DomainEdgeError

    try:
        asyncio.run(_with_manager(lambda m: m.remove_domain(domain_id)))
    except DomainEdgeError as e:
        _fail(e)
        return
    console.print(f"[green]Removed[/green] {domain_id}")


if __name__ == "__main__":
    main()
