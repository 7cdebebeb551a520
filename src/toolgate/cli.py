"""
Toolgate CLI

Command-line interface for Toolgate.

Commands:
    toolgate run "message"               Run one turn, streaming its events
    toolgate score command "rm -rf /x"   Risk-score an operation
    toolgate simulate path /etc/passwd   Dry-run an operation
    toolgate policies                    List the active security policies
    toolgate audit verify                Verify the audit hash chain
    toolgate serve                       Start the API server

Usage:
    pip install toolgate[cli]
    toolgate run "List the files in /workspace/project"
"""

from __future__ import annotations

import asyncio
import json
import os
import sys

import click
from rich.console import Console
from rich.table import Table

from toolgate.config import ToolgateConfig
from toolgate.core.models import (
    EventType,
    Operation,
    OperationType,
    PipelineEvent,
    PolicyType,
    RiskAssessment,
    SimulationResult,
)
from toolgate.exceptions import ConfigError
from toolgate.logging import configure_logging
from toolgate.security import create_approval_manager
from toolgate.storage.repository import AuditRepository, PolicyRepository

console = Console()

OPERATION_KINDS = {
    "command": OperationType.COMMAND,
    "path": OperationType.FILE_OPERATION,
    "url": OperationType.NETWORK,
    "tool": OperationType.TOOL_CALL,
}

RISK_COLORS = {"low": "green", "medium": "yellow", "high": "red", "critical": "bold red"}


def _db_url(value: str | None) -> str:
    return value or os.environ.get("TOOLGATE_DATABASE_URL", "toolgate.db")


def _load_config(path: str | None) -> ToolgateConfig:
    try:
        return ToolgateConfig.load(path) if path else ToolgateConfig.from_env()
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


def _operation(kind: str, target: str, operation: str, method: str) -> Operation:
    op_type = OPERATION_KINDS[kind]
    if op_type == OperationType.COMMAND:
        return Operation(type=op_type, command=target, summary=f"Run `{target}`")
    if op_type == OperationType.FILE_OPERATION:
        return Operation(type=op_type, path=target, operation=operation, summary=f"{operation} {target}")
    if op_type == OperationType.NETWORK:
        return Operation(type=op_type, url=target, method=method.upper(), summary=f"{method.upper()} {target}")
    return Operation(type=op_type, tool_id=target, summary=f"Run tool {target}")


def _print_assessment(risk: RiskAssessment) -> None:
    color = RISK_COLORS.get(risk.level.value, "white")
    console.print(f"  Score:    [{color}]{risk.score}[/] ({risk.level.value})")
    console.print(f"  Action:   {risk.action.value}")
    console.print(f"  Approval: {'required' if risk.requires_approval else 'not required'}")
    for factor in risk.factors:
        console.print(f"    [dim]-[/] {factor}")


def _print_simulation(result: SimulationResult) -> None:
    verdict = "[green]would execute[/]" if result.would_execute else "[red]would NOT execute[/]"
    console.print(f"  {verdict}  ({result.policy_check.reason})")
    if result.risk_assessment:
        _print_assessment(result.risk_assessment)
    for change in result.predicted_changes:
        console.print(f"  [cyan]{change.type}[/] {change.description}")
    for warning in result.warnings:
        console.print(f"  [yellow]! {warning}[/]")


def _print_event(event: PipelineEvent) -> None:
    payload = event.payload
    if event.type == EventType.ROUTER_DECISION:
        console.print(f"  [dim]router[/] needs_tools={payload['needs_tools']} goal={payload['goal']!r}")
    elif event.type == EventType.TOOL_PLAN:
        console.print(f"  [dim]plan[/] {payload['step_count']} steps: {', '.join(payload['selected_tools'])}")
    elif event.type == EventType.TOOL_RESULT:
        result = payload["result"]
        mark = "[green]+[/]" if result.success else "[red]x[/]"
        detail = f" [yellow]{result.error}[/]" if result.error else ""
        console.print(f"  {mark} {result.tool_id} ({result.elapsed_ms:.0f}ms){detail}")
        if result.approval_request_id:
            console.print(f"    [bold yellow]approval pending:[/] {result.approval_request_id}")
    elif event.type == EventType.FINAL_MESSAGE:
        console.print()
        console.print(payload["message"])
        console.print(f"\n  [dim]{payload.get('provider')}/{payload.get('model')}[/]")
    elif event.type == EventType.ERROR:
        console.print(f"  [bold red]Error:[/] {payload['error']}")
    elif event.type != EventType.DONE:
        console.print(f"  [dim]{event.type.value}[/]")


@click.group()
@click.version_option(version="0.4.0", prog_name="toolgate")
@click.option("--log-level", default="WARNING", help="Log level for the toolgate logger")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
def cli(log_level: str, json_logs: bool) -> None:
    """Toolgate: tool-aware orchestration with risk-gated execution"""
    configure_logging(level=log_level, json_output=json_logs)


@cli.command()
@click.argument("message")
@click.option("--session", "session_id", default="cli", help="Session id")
@click.option("--config", "config_path", type=click.Path(exists=True), default=None)
@click.option("--db", "db_url", default=None, help="Database URL (SQLite path or postgresql://)")
@click.option("--json-output", is_flag=True, help="Print raw events as JSON lines")
def run(message: str, session_id: str, config_path: str | None, db_url: str | None, json_output: bool) -> None:
    """Run one turn and stream its events."""
    from toolgate import Toolgate

    try:
        gate = Toolgate(_load_config(config_path), db_url=db_url)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    async def _stream() -> bool:
        failed = False
        async for event in gate.stream_turn(session_id, message):
            if json_output:
                click.echo(json.dumps(event.to_dict(), default=str))
            else:
                _print_event(event)
            failed = failed or event.type == EventType.ERROR
        return failed

    if not json_output:
        console.print(f"\n[bold green]Toolgate[/] turn for session [bold]{session_id}[/]\n")
    try:
        failed = asyncio.run(_stream())
    except KeyboardInterrupt:
        console.print("\n  Turn interrupted.")
        sys.exit(1)
    if failed:
        sys.exit(1)


@cli.command()
@click.argument("kind", type=click.Choice(sorted(OPERATION_KINDS)))
@click.argument("target")
@click.option("--operation", default="read", help="File operation (read, write, delete, ...)")
@click.option("--method", default="GET", help="HTTP method for url targets")
@click.option("--db", "db_url", default=None, help="Read policies from this database")
def score(kind: str, target: str, operation: str, method: str, db_url: str | None) -> None:
    """Risk-score a command, path, url or tool call."""
    manager = create_approval_manager(policy_store=PolicyRepository(db_url) if db_url else None)
    risk = manager.scorer.score_operation(_operation(kind, target, operation, method))
    console.print(f"\n[bold]Risk assessment[/] for {kind} [bold]{target}[/]")
    _print_assessment(risk)


@cli.command()
@click.argument("kind", type=click.Choice(sorted(OPERATION_KINDS)))
@click.argument("target")
@click.option("--operation", default="read", help="File operation (read, write, delete, ...)")
@click.option("--method", default="GET", help="HTTP method for url targets")
@click.option("--db", "db_url", default=None, help="Read policies from this database")
@click.option("--json-output", is_flag=True, help="Print the simulation as JSON")
def simulate(kind: str, target: str, operation: str, method: str, db_url: str | None, json_output: bool) -> None:
    """Dry-run a command, path, url or tool call without executing it."""
    manager = create_approval_manager(policy_store=PolicyRepository(db_url) if db_url else None)
    result = manager.simulator.simulate(_operation(kind, target, operation, method))
    if json_output:
        click.echo(result.model_dump_json(indent=2))
        return
    console.print(f"\n[bold]Dry run[/] for {kind} [bold]{target}[/]")
    _print_simulation(result)


@cli.command()
@click.option("--type", "policy_type", type=click.Choice([t.value for t in PolicyType]), default=None)
@click.option("--db", "db_url", default=None, help="Read policies from this database")
def policies(policy_type: str | None, db_url: str | None) -> None:
    """List the active security policies, highest precedence first."""
    manager = create_approval_manager(policy_store=PolicyRepository(db_url) if db_url else None)
    registry = manager.simulator.policy_registry
    types = [PolicyType(policy_type)] if policy_type else list(PolicyType)

    table = Table(title="Security Policies")
    for column in ("Type", "Pattern", "Action", "Priority", "Risk weight", "Id"):
        table.add_column(column)
    for t in types:
        for p in registry.get_policies_by_type(t):
            color = "green" if p.action.value == "allow" else "red"
            table.add_row(
                t.value, p.pattern, f"[{color}]{p.action.value}[/]",
                str(p.priority), str(p.risk_weight), p.id,
            )
    console.print(table)


@cli.group()
def audit() -> None:
    """Inspect the audit log."""


@audit.command()
@click.option("--db", "db_url", default=None, help="Database URL (defaults to TOOLGATE_DATABASE_URL)")
def verify(db_url: str | None) -> None:
    """Verify the audit hash chain."""
    from toolgate.audit.trace_logger import AuditLog

    log = AuditLog(AuditRepository(_db_url(db_url)))
    ok, message = log.verify_integrity()
    console.print("\n[bold]Audit Chain Verification[/]")
    console.print(f"  Records: {len(log)}")
    if ok:
        console.print(f"  [green]{message}[/]")
    else:
        console.print(f"  [bold red]{message}[/]")
        sys.exit(1)


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, type=int, help="Port number")
@click.option("--reload", is_flag=True, help="Auto-reload on changes")
def serve(host: str, port: int, reload: bool) -> None:
    """Start the Toolgate API server."""
    import uvicorn

    console.print(f"[bold green]Toolgate API[/] on {host}:{port}")
    uvicorn.run("toolgate.api.server:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    cli()
