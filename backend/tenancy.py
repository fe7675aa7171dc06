from __future__ import annotations

import os
import re
from dataclasses import dataclass

from fastapi import Header

from errors import UnknownTenantError, ValidationError

TENANT_TOKEN_PATTERN = re.compile(r"^[a-z][a-z0-9_]{0,47}$")
SCHEMA_PREFIX = "tenant_"


@dataclass(frozen=True)
class TenantNamespace:
    tenant_id: str
    schema: str


def _parse_allowlist(raw: str) -> tuple[str, ...]:
    tokens = []
    for item in raw.split(","):
        token = item.strip().casefold()
        if not token:
            continue
        if not TENANT_TOKEN_PATTERN.match(token):
            raise ValueError(f"Invalid tenant identifier in BEDWISE_TENANTS: {item!r}")
        if token not in tokens:
            tokens.append(token)
    return tuple(tokens)


KNOWN_TENANTS: tuple[str, ...] = _parse_allowlist(
    os.getenv("BEDWISE_TENANTS", "demo_hospital,general_hospital")
)


def known_namespaces() -> list[TenantNamespace]:
    return [TenantNamespace(tenant_id=token, schema=SCHEMA_PREFIX + token) for token in KNOWN_TENANTS]


def resolve_tenant(token: str | None) -> TenantNamespace:
    """Translate an external tenant token into a namespace handle.

    The returned schema name is only ever built from an allowlisted token, so it
    is safe to embed in namespace-selection statements.
    """
    if token is None or not token.strip():
        raise ValidationError("Tenant identifier is required")
    normalized = token.strip().casefold()
    if not TENANT_TOKEN_PATTERN.match(normalized) or normalized not in KNOWN_TENANTS:
        raise UnknownTenantError(f"Unknown tenant '{token.strip()}'")
    return TenantNamespace(tenant_id=normalized, schema=SCHEMA_PREFIX + normalized)


def get_tenant(x_tenant_id: str | None = Header(default=None)) -> TenantNamespace:
    return resolve_tenant(x_tenant_id)


def get_actor_id(x_actor_id: str | None = Header(default=None)) -> int | None:
    if x_actor_id is None or not x_actor_id.strip():
        return None
    try:
        return int(x_actor_id)
    except ValueError as exc:
        raise ValidationError("X-Actor-ID must be an integer") from exc
