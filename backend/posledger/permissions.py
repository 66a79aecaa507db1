"""
Capability definitions and default role mappings.

A capability is a (module, action) pair, e.g. ("purchases", "void").
Capabilities are granular (one action each) and admin holds all of them.
"""

from .models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER


# =============================================================================
# CAPABILITY DEFINITIONS
# =============================================================================

# (module, action) -> description
CAPABILITY_DEFINITIONS = {
    ("stock", "view"): "View stock levels, movements and low-stock lists",
    ("stock", "adjust"): "Record manual stock adjustments",
    ("products", "manage"): "Create, edit and deactivate products and change prices",
    ("products", "import"): "Bulk-import products from a spreadsheet",
    ("suppliers", "manage"): "Create, edit and delete suppliers",
    ("purchases", "view"): "View purchase orders",
    ("purchases", "create"): "Create and edit purchase orders",
    ("purchases", "void"): "Void purchase orders",
    ("purchases", "pay"): "Record supplier payments",
    ("sales", "view"): "View sales",
    ("sales", "create"): "Ring up sales",
    ("sales", "edit"): "Edit sale customer, payment method and notes",
    ("sales", "void"): "Void sales",
    ("sales", "refund"): "Refund sale items",
    ("customers", "manage"): "Create, edit and delete customers",
    ("customers", "collect"): "Record customer debt repayments",
    ("backup", "export"): "Export a full data backup",
    ("backup", "restore"): "Replace all data from a backup",
}

ALL_CAPABILITIES = frozenset(CAPABILITY_DEFINITIONS)


# =============================================================================
# DEFAULT ROLE MAPPINGS
# =============================================================================

ROLE_CAPABILITIES = {
    ROLE_ADMIN: ALL_CAPABILITIES,
    ROLE_MANAGER: ALL_CAPABILITIES - {
        ("backup", "restore"),
        ("products", "import"),
    },
    ROLE_CASHIER: frozenset({
        ("stock", "view"),
        ("purchases", "view"),
        ("sales", "view"),
        ("sales", "create"),
        ("sales", "edit"),
        ("customers", "collect"),
    }),
}
