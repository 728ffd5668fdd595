"""
Definición de permisos RBAC por rol.
Mapea qué acciones puede realizar cada rol.
"""

from odontocore.core.exceptions import ForbiddenException
from odontocore.models.user import UserRole

CLINICAL_STAFF = [UserRole.SUPER_ADMIN, UserRole.CLINIC_ADMIN, UserRole.DOCTOR]

# ── Permisos por recurso ─────────────────────────────
# Formato: {recurso: {acción: [roles permitidos]}}
PERMISSIONS: dict[str, dict[str, list[UserRole]]] = {
    "clinical_record": {
        "open": [UserRole.SUPER_ADMIN, UserRole.DOCTOR],
        "read": CLINICAL_STAFF,
        "close": CLINICAL_STAFF,
        # Receptionist NO puede ver historias clínicas
        # No hay delete: las historias nunca se eliminan
    },
    "dental_chart": {
        "read": CLINICAL_STAFF,
        "edit": [UserRole.SUPER_ADMIN, UserRole.DOCTOR],
    },
}


def has_permission(role: UserRole, resource: str, action: str) -> bool:
    """Verifica si un rol tiene permiso para una acción en un recurso."""
    resource_perms = PERMISSIONS.get(resource, {})
    allowed_roles = resource_perms.get(action, [])
    return role in allowed_roles


def check_permission(role: UserRole, resource: str, action: str) -> None:
    """Lanza ForbiddenException si el rol no tiene el permiso."""
    if not has_permission(role, resource, action):
        raise ForbiddenException(
            f"El rol '{role.value}' no puede realizar '{action}' sobre '{resource}'"
        )
