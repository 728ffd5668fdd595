"""
Tests de autenticación JWT (RS256) y permisos por rol.
"""

import uuid

import pytest

from odontocore.auth.jwt import TokenType, create_access_token, decode_token
from odontocore.auth.rbac import check_permission, has_permission
from odontocore.core.exceptions import ForbiddenException
from odontocore.models.user import UserRole


class TestJWT:

    def test_access_token_round_trip(self, rsa_keys):
        user_id, clinic_id = uuid.uuid4(), uuid.uuid4()
        token = create_access_token(user_id, clinic_id, UserRole.DOCTOR.value)

        payload = decode_token(token)

        assert payload["sub"] == str(user_id)
        assert payload["clinic_id"] == str(clinic_id)
        assert payload["role"] == "doctor"
        assert payload["type"] == TokenType.ACCESS


class TestCurrentUser:

    @pytest.mark.asyncio
    async def test_valid_token_resolves_user(self, raw_client, rsa_keys, test_doctor, open_record):
        token = create_access_token(test_doctor.id, test_doctor.clinic_id, test_doctor.role.value)

        response = await raw_client.get(
            f"/api/v1/records/{open_record.id}",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 200
        assert response.json()["id"] == str(open_record.id)

    @pytest.mark.asyncio
    async def test_invalid_token_is_401(self, raw_client, rsa_keys, open_record):
        response = await raw_client.get(
            f"/api/v1/records/{open_record.id}",
            headers={"Authorization": "Bearer no-es-un-jwt"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_refresh_token_is_rejected(self, raw_client, rsa_keys, test_doctor, open_record):
        token = create_access_token(
            test_doctor.id, test_doctor.clinic_id, test_doctor.role.value,
            extra_claims={"type": TokenType.REFRESH},
        )

        response = await raw_client.get(
            f"/api/v1/records/{open_record.id}",
            headers={"Authorization": f"Bearer {token}"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_receptionist_token_is_403(self, raw_client, rsa_keys, test_receptionist, open_record):
        token = create_access_token(
            test_receptionist.id, test_receptionist.clinic_id, test_receptionist.role.value
        )

        response = await raw_client.get(
            f"/api/v1/records/{open_record.id}",
            headers={"Authorization": f"Bearer {token}"},
        )
        assert response.status_code == 403


class TestRBAC:

    @pytest.mark.parametrize("role,action,allowed", [
        (UserRole.DOCTOR, "edit", True),
        (UserRole.SUPER_ADMIN, "edit", True),
        (UserRole.CLINIC_ADMIN, "edit", False),
        (UserRole.CLINIC_ADMIN, "read", True),
        (UserRole.RECEPTIONIST, "read", False),
    ])
    def test_dental_chart_permissions(self, role, action, allowed):
        assert has_permission(role, "dental_chart", action) is allowed

    def test_unknown_resource_is_denied(self):
        assert has_permission(UserRole.SUPER_ADMIN, "invoice", "read") is False

    def test_check_permission_raises(self):
        with pytest.raises(ForbiddenException):
            check_permission(UserRole.RECEPTIONIST, "clinical_record", "open")
