"""
Recuperación ante conflictos de estado en el odontograma.

Protocolo explícito en tres pasos:

    1. attempt(handle)
    2. si falla con StateConflictException → fresh = recover()
    3. attempt(fresh) una sola vez

El handle recuperado se devuelve en el resultado y es el que recibe el
reintento. La recuperación nunca adopta el token vigente de un borrador
ajeno: solo abre uno nuevo. Sin bucles ni backoff: contra una historia cerrada un
reintento indefinido nunca terminaría. Cualquier otro error (validación,
permisos, no encontrado) se propaga sin reintentar.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar
from uuid import UUID

from odontocore.core.exceptions import StateConflictException

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ChartHandle:
    """
    Referencia a un borrador tal como la conoce el cliente.
    `reopened`: borrador abierto por la recuperación; no contiene
    ninguno de los cambios del cliente.
    """
    chart_id: UUID
    version_token: str | None = None
    reopened: bool = False


@dataclass(frozen=True)
class RecoveryOutcome(Generic[T]):
    result: T
    handle: ChartHandle
    recovered: bool


async def with_conflict_recovery(
    operation: Callable[[], Awaitable[T]],
    recover: Callable[[], Awaitable[object]],
) -> T:
    """
    operation(); ante StateConflictException → recover() y operation()
    una vez más. El segundo fallo, o el de recover(), se propaga tal cual.
    """
    try:
        return await operation()
    except StateConflictException as exc:
        logger.info(f"Conflicto de estado ({exc.reason.value}); recuperando y reintentando")

    await recover()
    try:
        return await operation()
    except StateConflictException as exc:
        logger.warning(f"Reintento fallido tras recuperación ({exc.reason.value})")
        raise


class ConflictRecovery(Generic[T]):
    """Ejecuta una mutación con una única recuperación y un único reintento."""

    def __init__(
        self,
        attempt: Callable[[ChartHandle], Awaitable[T]],
        recover: Callable[[], Awaitable[ChartHandle]],
    ):
        self.attempt = attempt
        self.recover = recover

    async def run(self, handle: ChartHandle) -> RecoveryOutcome[T]:
        current = handle
        recovered = False

        async def _operation() -> T:
            return await self.attempt(current)

        async def _recover() -> None:
            nonlocal current, recovered
            current = await self.recover()
            recovered = True
            logger.info(
                f"Borrador recuperado: {handle.chart_id} → {current.chart_id}"
            )

        result = await with_conflict_recovery(_operation, _recover)
        return RecoveryOutcome(result=result, handle=current, recovered=recovered)
