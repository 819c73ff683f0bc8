"""
Presentación Rich de planes, resultados de apply y salidas.
"""

from typing import Any, Dict, Iterable

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from cimiento.core.errors import CimientoError, DeploymentInvalid
from cimiento.core.execution.results import ActionOutcome, ApplyResult
from cimiento.core.execution.states import ActionStatus
from cimiento.core.model.resources import UNKNOWN
from cimiento.core.plan.models import Action, ActionKind, Plan

_KIND_STYLE = {
    ActionKind.CREATE: ("+", "green"),
    ActionKind.UPDATE: ("~", "yellow"),
    ActionKind.REPLACE: ("±", "magenta"),
    ActionKind.DELETE: ("-", "red"),
    ActionKind.NOOP: ("=", "dim"),
}

_STATUS_STYLE = {
    ActionStatus.PENDING: ("·", "dim", "pendiente"),
    ActionStatus.APPLYING: ("…", "cyan", "aplicando"),
    ActionStatus.APPLIED: ("✔", "green", "aplicado"),
    ActionStatus.FAILED: ("✘", "red", "fallido"),
    ActionStatus.ROLLED_BACK: ("↺", "yellow", "revertido"),
    ActionStatus.ROLLBACK_FAILED: ("⚠", "bold red", "rollback fallido"),
}


def _format_value(value: Any) -> str:
    if value is UNKNOWN:
        return "(conocido tras aplicar)"
    text = str(value)
    return escape(text if len(text) <= 60 else text[:57] + "...")


def _changes(action: Action) -> str:
    if action.kind == ActionKind.NOOP:
        return ""
    if action.kind in (ActionKind.CREATE, ActionKind.DELETE):
        return ", ".join(sorted(action.planned)) if action.planned else ""
    prior = action.prior.attributes if action.prior else {}
    lines = []
    for key in action.changed:
        if key == "type":
            lines.append(f"type: {action.prior.type} → {action.resource_type}")
            continue
        old = _format_value(prior.get(key, "-"))
        new = _format_value(action.planned.get(key, "-"))
        lines.append(f"{key}: {old} → {new}")
    return "\n".join(lines)


def render_plan(console: Console, plan: Plan) -> None:
    title = f"Plan de destrucción: {plan.deployment}" if plan.destroy else f"Plan: {plan.deployment}"
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("", width=2)
    table.add_column("Recurso", style="cyan")
    table.add_column("Tipo", style="dim")
    table.add_column("Acción")
    table.add_column("Cambios")
    for action in plan.actions:
        icon, style = _KIND_STYLE[action.kind]
        kind = action.kind.value
        if action.kind == ActionKind.REPLACE:
            kind += " (" + " → ".join(s.value for s in action.steps) + ")"
        table.add_row(
            f"[{style}]{icon}[/{style}]",
            action.resource_id,
            action.resource_type,
            f"[{style}]{kind}[/{style}]",
            _changes(action),
        )
    console.print(table)

    summary = plan.summary()
    parts = [f"{summary[k.value]} {k.value}" for k in ActionKind if summary[k.value]]
    if not plan.has_changes:
        console.print("[green]✔ Sin cambios: la infraestructura coincide con el deployment[/green]")
    else:
        console.print(f"[bold]Resumen:[/bold] {', '.join(parts)}")


def render_event(console: Console, outcome: ActionOutcome) -> None:
    """Línea de progreso por cada transición de una acción."""
    if outcome.action.kind == ActionKind.NOOP:
        return
    icon, style, label = _STATUS_STYLE[outcome.status]
    detail = ""
    if outcome.status == ActionStatus.APPLIED and outcome.physical_id:
        detail = f" ({outcome.physical_id})"
    elif outcome.status == ActionStatus.FAILED and outcome.error:
        detail = f": {escape(outcome.error.message)}"
    elif outcome.status == ActionStatus.ROLLBACK_FAILED and outcome.rollback_error:
        detail = f": {escape(outcome.rollback_error.message)}"
    console.print(f"  [{style}]{icon}[/{style}] {escape(outcome.action.describe())}: {label}{detail}")


def render_result(console: Console, result: ApplyResult) -> None:
    table = Table(title="Resultado", show_header=True, header_style="bold cyan")
    table.add_column("Recurso", style="cyan")
    table.add_column("Acción")
    table.add_column("Estado")
    table.add_column("Id físico", style="dim")
    table.add_column("Intentos", justify="right")
    table.add_column("Error", style="red")
    for outcome in result.outcomes:
        icon, style, label = _STATUS_STYLE[outcome.status]
        error = escape(str(outcome.error)) if outcome.error else ""
        if outcome.rollback_error:
            error = (error + "\n" if error else "") + escape(f"rollback: {outcome.rollback_error}")
        table.add_row(
            outcome.resource_id,
            outcome.action.kind.value,
            f"[{style}]{icon} {label}[/{style}]",
            outcome.physical_id or "",
            str(outcome.attempts) if outcome.attempts else "",
            error,
        )
    console.print(table)

    if result.canceled:
        console.print("[yellow]⚠ Apply cancelado: no se despacharon más acciones[/yellow]")
    if result.rollback_attempted:
        console.print(f"[yellow]Rollback ejecutado: {len(result.rolled_back_ids)} acción(es) revertida(s)[/yellow]")

    unknown = result.unknown_ids
    if unknown:
        render_unknown(console, unknown)


def render_unknown(console: Console, resource_ids: Iterable[str]) -> None:
    ids = list(resource_ids)
    body = "\n".join(f"  ⚠ {rid}" for rid in ids)
    console.print(Panel.fit(
        "[bold red]Recursos en estado desconocido o inconsistente[/bold red]\n"
        f"{body}\n\n"
        "[dim]Requieren revisión manual antes del próximo apply[/dim]",
        border_style="red",
    ))


def render_outputs(console: Console, outputs: Dict[str, Any], descriptions: Dict[str, str]) -> None:
    if not outputs:
        console.print("[dim]Sin salidas resueltas[/dim]")
        return
    table = Table(title="Salidas", show_header=True, header_style="bold cyan")
    table.add_column("Nombre", style="cyan")
    table.add_column("Valor", style="green")
    table.add_column("Descripción", style="dim")
    for name, value in outputs.items():
        table.add_row(name, escape(str(value)), escape(descriptions.get(name, "")))
    console.print(table)


def render_error(console: Console, error: CimientoError) -> None:
    console.print(f"[red]✘ {escape(str(error))}[/red]")
    if isinstance(error, DeploymentInvalid):
        for e in error.errors:
            console.print(f"  [red]•[/red] {escape(str(e))}")
