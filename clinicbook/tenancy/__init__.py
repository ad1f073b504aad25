"""
Multi-tenancy package.

Modules:
    context: TenantContext resolution and database tenant setting
    queries: Tenant-scoped query helpers
"""

from .context import (
    BOOKABLE_SUBSCRIPTIONS,
    TenantContext,
    escape_like,
    get_tenant_context,
    resolve_tenant_by_id,
    resolve_tenant_by_slug,
    resolve_tenant_by_slug_prefix,
    select_slug_match,
    set_db_tenant,
)

from .queries import (
    # Composable helpers
    scoped_select,
    tenant_filter,
    require_owned,
    # Catalog
    list_services,
    list_employees,
    list_active_employees,
    list_locations,
    list_active_faqs,
    # Customers
    list_customers,
    find_customer_by_email,
    count_customers,
    # Appointments / waitlist
    list_appointments,
    count_waiting,
)

__all__ = [
    # Context
    "BOOKABLE_SUBSCRIPTIONS",
    "TenantContext",
    "escape_like",
    "get_tenant_context",
    "resolve_tenant_by_id",
    "resolve_tenant_by_slug",
    "resolve_tenant_by_slug_prefix",
    "select_slug_match",
    "set_db_tenant",
    # Query helpers
    "scoped_select",
    "tenant_filter",
    "require_owned",
    "list_services",
    "list_employees",
    "list_active_employees",
    "list_locations",
    "list_active_faqs",
    "list_customers",
    "find_customer_by_email",
    "count_customers",
    "list_appointments",
    "count_waiting",
]
