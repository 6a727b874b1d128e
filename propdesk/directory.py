"""Tenant lookup by contact details, placeholder creation and display context."""

from __future__ import annotations

from typing import List, Optional, Tuple

from propdesk.datastore import REPOSITORY, IntakeRepository
from propdesk.models import UNKNOWN_PROPERTY_NAME, Tenant
from propdesk.runtime import get_logger

logger = get_logger(__name__)

PLACEHOLDER_GREETING = "there"


class TenantDirectory:
    def __init__(self, repository: Optional[IntakeRepository] = None):
        self.repository = repository or REPOSITORY

    def find_by_phone(self, phone: Optional[str]) -> Optional[Tenant]:
        if not phone:
            return None
        return self.repository.find_tenant_by_phone(phone)

    def find_by_email(self, email: Optional[str]) -> Optional[Tenant]:
        if not email:
            return None
        return self.repository.find_tenant_by_email(email)

    def create_placeholder(self, phone: Optional[str] = None, email: Optional[str] = None) -> Tenant:
        return self.repository.create_placeholder_tenant(phone=phone, email=email)

    def create_tenant(
        self,
        name: str,
        unit_number: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        property_id: Optional[str] = None,
    ) -> Tenant:
        tenant = self.repository.create_tenant(name, unit_number, email=email, phone=phone, property_id=property_id)
        logger.info("👤 Tenant %s created (%s, unit %s)", tenant.id, tenant.name, tenant.unit_number)
        return tenant

    def list_tenants(self) -> List[Tenant]:
        return self.repository.list_tenants()

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        return self.repository.get_tenant(tenant_id)

    def display_context(self, tenant: Tenant) -> Tuple[str, str, str]:
        """``(tenant name, unit number, property name)`` as shown on the dashboard."""
        prop = self.repository.get_property(tenant.property_id) if tenant.property_id else None
        return tenant.name, tenant.unit_number, prop.name if prop else UNKNOWN_PROPERTY_NAME


def greeting_name(tenant: Tenant) -> str:
    return PLACEHOLDER_GREETING if tenant.is_placeholder else tenant.name
