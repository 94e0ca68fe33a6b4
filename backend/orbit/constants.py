"""
Roles, lifecycle statuses and categories.

WHY: Centralized definitions keep the state machines, the policy engine,
the models and the migration in agreement. Every enum is str-valued so the
stored value is the lowercase name used by the API.
"""

from enum import Enum


# =============================================================================
# ROLES
# =============================================================================

class Role(str, Enum):
    EMPLOYEE = "employee"
    MANAGER = "manager"
    OWNER = "owner"
    ACCOUNTS = "accounts"

    @classmethod
    def parse(cls, value: str) -> "Role":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Invalid role '{value}'. Must be one of: {', '.join(r.value for r in cls)}"
            ) from None


# Roles that may see other users' profiles and write outside their own
# storage namespace.
PRIVILEGED_ROLES = frozenset({Role.MANAGER, Role.OWNER, Role.ACCOUNTS})

DEFAULT_ROLE_PRIORITY = (Role.OWNER, Role.ACCOUNTS, Role.MANAGER, Role.EMPLOYEE)

# Sign-up always assigns this, whatever the client asks for.
SIGNUP_ROLE = Role.EMPLOYEE


# =============================================================================
# EXPENSE LIFECYCLE
# =============================================================================

class ExpenseStatus(str, Enum):
    """
    STATE MACHINE:
        DRAFT -> SUBMITTED -> [REVIEWED] -> MANAGER_APPROVED -> OWNER_APPROVED
              -> [PENDING_PAYMENT] -> PAID

    Reject branches (terminal):
        SUBMITTED | REVIEWED -> MANAGER_REJECTED
        MANAGER_APPROVED     -> OWNER_REJECTED
    """
    DRAFT = "draft"
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    MANAGER_APPROVED = "manager_approved"
    MANAGER_REJECTED = "manager_rejected"
    OWNER_APPROVED = "owner_approved"
    OWNER_REJECTED = "owner_rejected"
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"


# Pipeline position; a status never moves to a lower rank.
EXPENSE_STATUS_RANK = {
    ExpenseStatus.DRAFT: 0,
    ExpenseStatus.SUBMITTED: 1,
    ExpenseStatus.REVIEWED: 2,
    ExpenseStatus.MANAGER_APPROVED: 3,
    ExpenseStatus.MANAGER_REJECTED: 3,
    ExpenseStatus.OWNER_APPROVED: 4,
    ExpenseStatus.OWNER_REJECTED: 4,
    ExpenseStatus.PENDING_PAYMENT: 5,
    ExpenseStatus.PAID: 6,
}

MANAGER_STAGE_STATUSES = frozenset({ExpenseStatus.SUBMITTED, ExpenseStatus.REVIEWED})
OWNER_STAGE_STATUSES = frozenset({ExpenseStatus.MANAGER_APPROVED})
PAYMENT_STAGE_STATUSES = frozenset({ExpenseStatus.OWNER_APPROVED, ExpenseStatus.PENDING_PAYMENT})

TERMINAL_EXPENSE_STATUSES = frozenset({
    ExpenseStatus.PAID,
    ExpenseStatus.MANAGER_REJECTED,
    ExpenseStatus.OWNER_REJECTED,
})

# Read visibility by role (row owners and the owner role see everything of theirs / all)
MANAGER_VISIBLE_STATUSES = frozenset({
    ExpenseStatus.SUBMITTED,
    ExpenseStatus.REVIEWED,
    ExpenseStatus.MANAGER_APPROVED,
    ExpenseStatus.MANAGER_REJECTED,
})
ACCOUNTS_VISIBLE_STATUSES = frozenset({
    ExpenseStatus.OWNER_APPROVED,
    ExpenseStatus.PENDING_PAYMENT,
    ExpenseStatus.PAID,
})


# =============================================================================
# ADVANCE LIFECYCLE
# =============================================================================

class AdvanceStatus(str, Enum):
    """PENDING -> APPROVED -> DISBURSED, PENDING -> REJECTED (terminal)."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"


TERMINAL_ADVANCE_STATUSES = frozenset({AdvanceStatus.REJECTED, AdvanceStatus.DISBURSED})
ACCOUNTS_VISIBLE_ADVANCE_STATUSES = frozenset({AdvanceStatus.APPROVED, AdvanceStatus.DISBURSED})

ADVANCE_REASON_MIN_LENGTH = 10


# =============================================================================
# FILES AND CATEGORIES
# =============================================================================

class FileCategory(str, Enum):
    BILL = "bill"
    PAYMENT_PROOF = "payment_proof"


# Suggested values; any non-empty category is accepted.
EXPENSE_CATEGORIES = (
    "Travel",
    "Food & Dining",
    "Office Supplies",
    "Software & Tools",
    "Marketing",
    "Training",
    "Client Entertainment",
    "Equipment",
    "Other",
)
