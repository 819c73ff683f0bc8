"""
CLI de cimiento.

Solo compone comandos y presentación; la lógica vive en core y providers.

Códigos de salida:
    0  éxito (o plan sin errores)
    1  el apply/destroy falló (con o sin rollback)
    2  error de configuración, validación, ciclo o lock
"""

import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Tuple

import typer
from dotenv import find_dotenv, load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from cimiento import __version__
from cimiento.cli.logging import configure_logging
from cimiento.cli.render import (
    render_error,
    render_event,
    render_outputs,
    render_plan,
    render_result,
)
from cimiento.core.engine import Engine
from cimiento.core.errors import ApplyFailed, CimientoError
from cimiento.core.execution.results import ApplyResult
from cimiento.core.execution.retry import CancelToken
from cimiento.core.infra.contracts import ProviderContext
from cimiento.core.model.loader import load_deployment
from cimiento.core.model.resources import DeploymentGraph
from cimiento.core.runtime.lock import DeploymentLock
from cimiento.core.runtime.resolver import state_file, state_root
from cimiento.core.runtime.settings import load_execution_settings, load_provider_settings
from cimiento.core.runtime.state import FileStateStore
from cimiento.providers.simulated import build_registry, open_cloud

EXIT_APPLY_FAILED = 1
EXIT_PLANNING_ERROR = 2

app = typer.Typer(
    name="cimiento",
    help="cimiento - motor declarativo de aprovisionamiento de infraestructura",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

DeploymentArg = typer.Argument(..., help="Archivo YAML del deployment")
StateDirOpt = typer.Option(None, "--state-dir", help="Directorio de estado (default: $CIMIENTO_STATE_ROOT o ./.cimiento)")
WorkersOpt = typer.Option(None, "--workers", "-w", help="Workers para ramas independientes del grafo")
TimeoutOpt = typer.Option(None, "--timeout", help="Timeout por llamada al adapter (segundos)")
MaxAttemptsOpt = typer.Option(None, "--max-attempts", help="Intentos ante fallos transitorios")
NoRollbackOpt = typer.Option(False, "--no-rollback", help="No revertir lo aplicado si una acción falla")
VerboseOpt = typer.Option(False, "--verbose", "-v", help="Logs de depuración")


@app.callback()
def _root() -> None:
    load_dotenv(find_dotenv(usecwd=True))


def _build_engine(
    graph: DeploymentGraph,
    state_dir: Optional[Path],
    workers: Optional[int] = None,
    timeout: Optional[float] = None,
    max_attempts: Optional[int] = None,
    no_rollback: bool = False,
) -> Engine:
    root = state_root(state_dir)
    settings = load_execution_settings(
        graph.settings,
        overrides={
            "workers": workers,
            "action_timeout": timeout,
            "max_attempts": max_attempts,
            "rollback_on_failure": False if no_rollback else None,
        },
    )
    return Engine(
        registry=build_registry(open_cloud(root, graph.name)),
        store=FileStateStore(state_file(root, graph.name), deployment=graph.name),
        settings=settings,
        context=ProviderContext(settings=load_provider_settings(), deployment=graph.name),
        lock=DeploymentLock(root, graph.name, timeout=settings.lock_timeout),
    )


def _prepare(deployment: Path, state_dir: Optional[Path], verbose: bool, **overrides) -> Tuple[DeploymentGraph, Engine]:
    configure_logging(verbose)
    try:
        graph = load_deployment(deployment)
        return graph, _build_engine(graph, state_dir, **overrides)
    except CimientoError as e:
        render_error(console, e)
        raise typer.Exit(code=EXIT_PLANNING_ERROR)


@contextmanager
def _sigint_cancels(cancel: CancelToken) -> Iterator[None]:
    """Ctrl+C durante un apply: deja de despachar acciones y hace rollback."""
    def handler(signum, frame):
        if cancel.cancelled:
            raise KeyboardInterrupt
        console.print("\n[yellow]⚠ Cancelando: se terminan las acciones en curso (Ctrl+C de nuevo para abortar)[/yellow]")
        cancel.cancel()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _finish(graph: DeploymentGraph, result: ApplyResult) -> None:
    console.print()
    render_result(console, result)
    if result.outputs:
        render_outputs(console, result.outputs, {o.name: o.description for o in graph.outputs})
    for name, error in result.output_errors.items():
        console.print(f"[yellow]⚠ Salida '{name}' sin resolver: {escape(error)}[/yellow]")
    try:
        result.raise_for_failure()
    except ApplyFailed as e:
        render_error(console, e)
        raise typer.Exit(code=EXIT_APPLY_FAILED)


@app.command()
def plan(
    deployment: Path = DeploymentArg,
    state_dir: Optional[Path] = StateDirOpt,
    verbose: bool = VerboseOpt,
):
    """Calcula y muestra el plan sin aplicar nada."""
    graph, engine = _prepare(deployment, state_dir, verbose)
    try:
        result = engine.plan(graph)
    except CimientoError as e:
        render_error(console, e)
        raise typer.Exit(code=EXIT_PLANNING_ERROR)
    render_plan(console, result)


@app.command()
def apply(
    deployment: Path = DeploymentArg,
    state_dir: Optional[Path] = StateDirOpt,
    workers: Optional[int] = WorkersOpt,
    timeout: Optional[float] = TimeoutOpt,
    max_attempts: Optional[int] = MaxAttemptsOpt,
    no_rollback: bool = NoRollbackOpt,
    verbose: bool = VerboseOpt,
):
    """Planifica y aplica el deployment."""
    graph, engine = _prepare(
        deployment, state_dir, verbose,
        workers=workers, timeout=timeout, max_attempts=max_attempts, no_rollback=no_rollback,
    )
    cancel = CancelToken()
    try:
        render_plan(console, engine.plan(graph))
        console.print()
        with _sigint_cancels(cancel):
            result = engine.apply(graph, cancel=cancel, on_event=lambda o: render_event(console, o))
    except CimientoError as e:
        render_error(console, e)
        raise typer.Exit(code=EXIT_PLANNING_ERROR)
    _finish(graph, result)


@app.command()
def destroy(
    deployment: Path = DeploymentArg,
    state_dir: Optional[Path] = StateDirOpt,
    workers: Optional[int] = WorkersOpt,
    timeout: Optional[float] = TimeoutOpt,
    max_attempts: Optional[int] = MaxAttemptsOpt,
    no_rollback: bool = NoRollbackOpt,
    verbose: bool = VerboseOpt,
):
    """Borra todos los recursos registrados, dependientes primero."""
    graph, engine = _prepare(
        deployment, state_dir, verbose,
        workers=workers, timeout=timeout, max_attempts=max_attempts, no_rollback=no_rollback,
    )
    cancel = CancelToken()
    try:
        render_plan(console, engine.plan_destroy(graph))
        console.print()
        with _sigint_cancels(cancel):
            result = engine.destroy(graph, cancel=cancel, on_event=lambda o: render_event(console, o))
    except CimientoError as e:
        render_error(console, e)
        raise typer.Exit(code=EXIT_PLANNING_ERROR)
    _finish(graph, result)


@app.command()
def validate(
    deployment: Path = DeploymentArg,
    state_dir: Optional[Path] = StateDirOpt,
    verbose: bool = VerboseOpt,
):
    """Valida el documento, el grafo de dependencias y los atributos de cada recurso."""
    graph, engine = _prepare(deployment, state_dir, verbose)
    try:
        order = engine.validate(graph)
    except CimientoError as e:
        render_error(console, e)
        raise typer.Exit(code=EXIT_PLANNING_ERROR)
    console.print(f"[green]✔ Deployment '{graph.name}' válido[/green] ({len(order)} recursos)")
    console.print(f"[dim]Orden: {' → '.join(order)}[/dim]")


@app.command()
def output(
    deployment: Path = DeploymentArg,
    name: Optional[str] = typer.Argument(None, help="Salida concreta (imprime solo el valor)"),
    state_dir: Optional[Path] = StateDirOpt,
    verbose: bool = VerboseOpt,
):
    """Muestra las salidas resueltas contra el último estado aplicado."""
    graph, engine = _prepare(deployment, state_dir, verbose)
    try:
        outputs = engine.outputs(graph)
    except CimientoError as e:
        render_error(console, e)
        raise typer.Exit(code=EXIT_PLANNING_ERROR)
    if name is not None:
        if name not in outputs:
            console.print(f"[red]✘ La salida '{name}' no existe o aún no está resuelta[/red]")
            raise typer.Exit(code=EXIT_PLANNING_ERROR)
        console.print(str(outputs[name]), markup=False, highlight=False)
        return
    render_outputs(console, outputs, {o.name: o.description for o in graph.outputs})


@app.command()
def version():
    """Muestra la versión de cimiento"""
    console.print(Panel.fit(
        "[bold cyan]cimiento[/bold cyan]\n"
        "[dim]Motor declarativo de aprovisionamiento de infraestructura[/dim]\n\n"
        f"[bold]Versión:[/bold] {__version__}\n"
        f"[bold]Estado:[/bold] {state_root()}",
        border_style="cyan"
    ))


def main():
    app()
