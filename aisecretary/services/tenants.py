from __future__ import annotations

from datetime import datetime
import logging
import re
from typing import Any, Callable
import uuid

from aisecretary.core.errors import NotFoundError, ValidationError
from aisecretary.core.timeutil import utc_now
from aisecretary.domain.models import Role, Tenant, User, UserDirectoryEntry
from aisecretary.persistence.keys import (
    ALL_TENANTS_KEY,
    KIND_TASK,
    KIND_USER,
    index_key,
    primary_key,
    tenant_info_key,
    user_directory_key,
)
from aisecretary.persistence.records import RecordStore
from aisecretary.persistence.store import KeyValueStore
from aisecretary.services.usage import UsageService


logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]")

ROLES: tuple[str, ...] = ("executive", "employee")


def slugify_company(company_name: str) -> str:
    return _SLUG_RE.sub("_", company_name.lower())


def generate_tenant_id(company_name: str) -> str:
    return f"tenant_{slugify_company(company_name)}_{uuid.uuid4().hex[:8]}"


def _role_index(tenant_id: str, role: str) -> str:
    return index_key(tenant_id, KIND_USER, "role", role)


def _user_indexes(tenant_id: str, role: str) -> list[str]:
    return [_role_index(tenant_id, "all"), _role_index(tenant_id, role)]


def _require(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    return value.strip()


class TenantService:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        usage: UsageService | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._records = RecordStore(store)
        self._usage = usage or UsageService(store, time_provider=time_provider)
        self._time_provider = time_provider or utc_now

    async def get_tenant(self, tenant_id: str) -> Tenant:
        tenant = await self._records.get(tenant_info_key(tenant_id), Tenant)
        if tenant is None:
            raise NotFoundError("tenant", tenant_id)
        return tenant

    async def create_tenant(self, company_name: str, admin_user_id: str, admin_name: str) -> tuple[Tenant, User]:
        # Validate everything before the first write so a bad request leaves no partial tenant.
        company_name = _require(company_name, "company_name")
        admin_user_id = _require(admin_user_id, "admin_user_id")
        admin_name = _require(admin_name, "admin_name")
        user_directory_key(admin_user_id)

        now = self._time_provider()
        tenant = Tenant(tenant_id=generate_tenant_id(company_name), company_name=company_name, created_at=now)
        await self._records.put(tenant_info_key(tenant.tenant_id), tenant)
        await self._store.sadd(ALL_TENANTS_KEY, tenant.tenant_id)
        admin = await self._write_user(
            User(
                user_id=admin_user_id,
                name=admin_name,
                tenant_id=tenant.tenant_id,
                role="executive",
                is_admin=True,
                registered_at=now,
            )
        )
        logger.info("tenant_created tenant_id=%s admin_user_id=%s", tenant.tenant_id, admin_user_id)
        return tenant, admin

    async def _write_user(self, user: User) -> User:
        key = primary_key(user.tenant_id, KIND_USER, user.user_id)
        await self._records.put(
            user_directory_key(user.user_id),
            UserDirectoryEntry(tenant_id=user.tenant_id, role=user.role),
        )
        await self._records.put_indexed(
            key,
            user,
            entity_id=user.user_id,
            index_keys=_user_indexes(user.tenant_id, user.role),
        )
        return user

    async def add_user_to_tenant(
        self,
        tenant_id: str,
        user_id: str,
        name: str,
        *,
        department: str | None = None,
        role: str | None = None,
        is_admin: bool = False,
    ) -> User:
        user_id = _require(user_id, "user_id")
        name = _require(name, "name")
        role = role or "employee"
        if role not in ROLES:
            raise ValidationError(f"Invalid role: {role}", field="role")
        await self.get_tenant(tenant_id)
        existing = await self._records.get(primary_key(tenant_id, KIND_USER, user_id), User)
        if existing is None:
            await self._usage.enforce_user_limit(tenant_id)
        user = User(
            user_id=user_id,
            name=name,
            department=department or "",
            tenant_id=tenant_id,
            role=role,
            is_admin=is_admin,
            registered_at=existing.registered_at if existing else self._time_provider(),
            updated_at=self._time_provider() if existing else None,
        )
        if existing is not None and existing.role != role:
            await self._records.reindex(
                primary_key(tenant_id, KIND_USER, user_id),
                entity_id=user_id,
                old_index_keys=_user_indexes(tenant_id, existing.role),
                new_index_keys=_user_indexes(tenant_id, role),
            )
        await self._write_user(user)
        logger.info("tenant_user_added tenant_id=%s user_id=%s role=%s", tenant_id, user_id, role)
        return user

    async def get_user(self, tenant_id: str, user_id: str) -> User:
        user = await self._records.get(primary_key(tenant_id, KIND_USER, user_id), User)
        if user is None:
            raise NotFoundError("user", user_id)
        return user

    async def list_tenant_users(self, tenant_id: str, role: str | None = None) -> list[User]:
        index = _role_index(tenant_id, role or "all")
        ids = await self._records.members_of(index)
        users = await self._records.fetch_many(
            ids, lambda user_id: primary_key(tenant_id, KIND_USER, user_id), User
        )
        return sorted(users, key=lambda user: user.registered_at)

    async def list_executives(self, tenant_id: str) -> list[User]:
        return await self.list_tenant_users(tenant_id, role="executive")

    async def list_employees(self, tenant_id: str) -> list[User]:
        return await self.list_tenant_users(tenant_id, role="employee")

    async def update_user(self, tenant_id: str, user_id: str, patch: dict[str, Any]) -> User:
        key = primary_key(tenant_id, KIND_USER, user_id)
        async with self._records.lock(key):
            current = await self.get_user(tenant_id, user_id)
            changes = {field: value for field, value in patch.items() if value is not None}
            if "name" in changes:
                changes["name"] = _require(changes["name"], "name")
            new_role: Role = changes.get("role", current.role)
            if new_role not in ROLES:
                raise ValidationError(f"Invalid role: {new_role}", field="role")
            updated = current.model_copy(
                update={
                    **{k: v for k, v in changes.items() if k in ("name", "department", "role", "is_admin")},
                    "updated_at": self._time_provider(),
                }
            )
            await self._records.put(key, updated)
            if new_role != current.role:
                await self._records.reindex(
                    key,
                    entity_id=user_id,
                    old_index_keys=_user_indexes(tenant_id, current.role),
                    new_index_keys=_user_indexes(tenant_id, new_role),
                )
                await self._records.put(
                    user_directory_key(user_id),
                    UserDirectoryEntry(tenant_id=tenant_id, role=new_role),
                )
        return updated

    async def delete_user(self, tenant_id: str, user_id: str) -> bool:
        key = primary_key(tenant_id, KIND_USER, user_id)
        async with self._records.lock(key):
            await self.get_user(tenant_id, user_id)
            await self._records.delete_record(key, entity_id=user_id)
            await self._store.delete(user_directory_key(user_id))
            # Assigned tasks survive; only their assignee index entry goes, through each task ledger.
            assignee_index = index_key(tenant_id, KIND_TASK, "assignee", user_id)
            for task_id in sorted(await self._records.members_of(assignee_index)):
                await self._records.remove_from_index(
                    assignee_index, task_id, record_key=primary_key(tenant_id, KIND_TASK, task_id)
                )
        logger.info("tenant_user_deleted tenant_id=%s user_id=%s", tenant_id, user_id)
        return True

    async def resolve_sender(self, user_id: str) -> UserDirectoryEntry | None:
        # Chat senders map to a tenant through the global directory entry.
        return await self._records.get(user_directory_key(user_id), UserDirectoryEntry)

    async def list_tenants(self) -> list[dict[str, Any]]:
        tenants: list[dict[str, Any]] = []
        for tenant_id in sorted(await self._store.smembers(ALL_TENANTS_KEY)):
            tenant = await self._records.get(tenant_info_key(tenant_id), Tenant)
            if tenant is None:
                continue
            executives = await self._store.scard(_role_index(tenant_id, "executive"))
            employees = await self._store.scard(_role_index(tenant_id, "employee"))
            tenants.append(
                {
                    **tenant.model_dump(mode="json"),
                    "executive_count": executives,
                    "employee_count": employees,
                    "user_count": executives + employees,
                }
            )
        tenants.sort(key=lambda item: item["created_at"], reverse=True)
        return tenants

    async def find_tenant_by_company(self, company_name: str) -> Tenant | None:
        # Case-insensitive exact match on the registered company name.
        needle = company_name.strip().casefold()
        if not needle:
            return None
        for tenant_id in sorted(await self._store.smembers(ALL_TENANTS_KEY)):
            tenant = await self._records.get(tenant_info_key(tenant_id), Tenant)
            if tenant is not None and tenant.is_active and tenant.company_name.casefold() == needle:
                return tenant
        return None
