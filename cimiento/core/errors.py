"""
Errores del motor de aprovisionamiento.

El core solo define excepciones; las capas (CLI/API) se encargan del formato de salida.
Todas identifican el recurso lógico afectado cuando existe uno.
"""

from typing import List, Optional, Sequence


class CimientoError(Exception):
    """Error base de cimiento."""

    def __init__(self, message: str, resource_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.resource_id = resource_id

    def __str__(self) -> str:
        if self.resource_id:
            return f"[{self.resource_id}] {self.message}"
        return self.message


class ConfigError(CimientoError):
    """Error de configuración (archivo faltante, YAML inválido, esquema incorrecto)."""
    pass


class ValidationError(CimientoError):
    """Error de validación de un recurso (atributos, referencias, ids)."""
    pass


class UnknownResourceType(ValidationError):
    """El tipo de recurso no está registrado en el catálogo de adapters."""
    pass


class DeploymentInvalid(CimientoError):
    """Agrupa todos los ValidationError encontrados al planificar."""

    def __init__(self, errors: Sequence[ValidationError]):
        self.errors: List[ValidationError] = list(errors)
        ids = ", ".join(sorted({e.resource_id for e in self.errors if e.resource_id}))
        super().__init__(f"{len(self.errors)} error(es) de validación en: {ids or 'deployment'}")


class CycleError(CimientoError):
    """Ciclo de dependencias: fatal en la etapa de planificación."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle: List[str] = list(cycle)
        path = " → ".join(self.cycle + self.cycle[:1])
        super().__init__(f"Ciclo de dependencias detectado: {path}", resource_id=self.cycle[0] if self.cycle else None)


class AdapterError(CimientoError):
    """
    Error delegado desde un adapter de tipo de recurso.

    transient=True marca fallos reintentables (rate limiting, timeouts);
    el resto (validación, conflicto) falla de inmediato.
    """

    def __init__(self, message: str, resource_id: Optional[str] = None, transient: bool = False):
        super().__init__(message, resource_id=resource_id)
        self.transient = transient
        self.attempts = 1


class ActionTimeout(AdapterError):
    """La llamada al adapter superó el timeout por acción."""

    def __init__(self, message: str, resource_id: Optional[str] = None):
        super().__init__(message, resource_id=resource_id, transient=True)


class LockError(CimientoError):
    """Otro apply/destroy tiene tomado el lock del deployment."""
    pass


class IllegalTransition(CimientoError):
    """Transición de estado no permitida para una acción del plan."""

    def __init__(self, src: str, dst: str):
        self.src = src
        self.dst = dst
        super().__init__(f"Transición de estado inválida: {src} → {dst}")


class ApplyFailed(CimientoError):
    """Una o más acciones fallaron; el rollback (si se ejecutó) terminó bien."""

    def __init__(self, message: str, failed_ids: Sequence[str]):
        self.failed_ids: List[str] = list(failed_ids)
        super().__init__(message, resource_id=self.failed_ids[0] if self.failed_ids else None)


class RollbackFailure(ApplyFailed):
    """
    El rollback no pudo revertir todo: requiere intervención del operador.
    inconsistent_ids lista los recursos en estado físico desconocido.
    """

    def __init__(self, message: str, failed_ids: Sequence[str], inconsistent_ids: Sequence[str]):
        super().__init__(message, failed_ids)
        self.inconsistent_ids: List[str] = list(inconsistent_ids)
