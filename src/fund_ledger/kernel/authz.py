"""
Authorization - one capability check per operation

Every core operation receives an already-authenticated Actor. Instead of
sprinkling "is this an admin?" and "is this the owner?" checks through the
handlers, each handler asks a single question up front:

    authorize(actor, Capability.DISBURSE, budget)

and gets either silence or a NotAuthorized / NotOwner error that names
exactly which right was missing.
"""

from enum import Enum
from typing import Protocol

from pydantic import BaseModel, Field

from fund_ledger.kernel.errors import NotAuthorized, NotOwner


class Role(str, Enum):
    """
    Actor roles

    ADMIN manages allocation, disbursement and the pool. USER owns budgets
    and spends against them. SYSTEM is used for payment channel callbacks
    and the reconciliation tick.
    """

    ADMIN = "ADMIN"
    USER = "USER"
    SYSTEM = "SYSTEM"


class Actor(BaseModel):
    """Authenticated caller of a ledger operation"""

    actor_id: str = Field(..., min_length=1)
    role: Role = Role.USER

    model_config = {"frozen": True}

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @classmethod
    def system(cls, actor_id: str = "system") -> "Actor":
        """Actor used for channel callbacks and scheduled reconciliation"""
        return cls(actor_id=actor_id, role=Role.SYSTEM)


class Capability(str, Enum):
    """Rights checked by authorize(); values read well in error messages"""

    CREATE_BUDGET = "create a budget"
    EDIT_BUDGET = "edit a budget"
    DELETE_BUDGET = "delete a budget"
    CORRECT_BUDGET_ITEM = "correct a budget item"
    APPROVE_BUDGET = "approve a budget"
    REJECT_BUDGET = "reject a budget"
    REQUEST_REVISION = "request a budget revision"
    DISBURSE = "disburse funds"
    SETTLE_DISBURSEMENT = "settle a disbursement"
    REVOKE_BUDGET = "revoke a budget"
    REBATCH = "restructure disbursement batches"
    REQUEST_SUPPLEMENTARY = "request a supplementary budget"
    DECIDE_SUPPLEMENTARY = "decide a supplementary budget"
    POST_EXPENDITURE = "post an expenditure"
    VOID_EXPENDITURE = "void an expenditure"
    ADJUST_POOL = "adjust the fund pool"
    SUBMIT_REMITTANCE = "submit a remittance"
    VERIFY_REMITTANCE = "verify a remittance"
    VIEW_BUDGET = "view a budget"


class OwnedResource(Protocol):
    """Anything with an owner - in practice a Budget"""

    budget_id: str
    owner_id: str


ADMIN_ONLY = frozenset(
    {
        Capability.APPROVE_BUDGET,
        Capability.REJECT_BUDGET,
        Capability.REQUEST_REVISION,
        Capability.DISBURSE,
        Capability.REVOKE_BUDGET,
        Capability.REBATCH,
        Capability.DECIDE_SUPPLEMENTARY,
        Capability.ADJUST_POOL,
        Capability.VERIFY_REMITTANCE,
    }
)

OWNER_ONLY = frozenset(
    {
        Capability.EDIT_BUDGET,
        Capability.REQUEST_SUPPLEMENTARY,
        Capability.POST_EXPENDITURE,
    }
)

OWNER_OR_ADMIN = frozenset(
    {
        Capability.DELETE_BUDGET,
        Capability.CORRECT_BUDGET_ITEM,
        Capability.VOID_EXPENDITURE,
        Capability.VIEW_BUDGET,
    }
)

SYSTEM_OR_ADMIN = frozenset({Capability.SETTLE_DISBURSEMENT})


def authorize(
    actor: Actor,
    capability: Capability,
    resource: OwnedResource | None = None,
) -> None:
    """
    Check that actor holds capability, optionally over a specific budget

    Args:
        actor: Authenticated caller
        capability: Right required by the operation
        resource: Budget the operation targets (needed for ownership checks)

    Raises:
        NotAuthorized: If the actor's role never grants the capability
        NotOwner: If the capability requires ownership and actor is not the owner
    """
    if capability in ADMIN_ONLY:
        if not actor.is_admin:
            raise NotAuthorized(actor.actor_id, actor.role.value, capability.value)
        return

    if capability in SYSTEM_OR_ADMIN:
        if actor.role not in (Role.ADMIN, Role.SYSTEM):
            raise NotAuthorized(actor.actor_id, actor.role.value, capability.value)
        return

    if actor.role == Role.SYSTEM:
        raise NotAuthorized(actor.actor_id, actor.role.value, capability.value)

    if capability in OWNER_ONLY or capability in OWNER_OR_ADMIN:
        if resource is None:
            return
        if capability in OWNER_OR_ADMIN and actor.is_admin:
            return
        if resource.owner_id != actor.actor_id:
            raise NotOwner(actor.actor_id, resource.budget_id, resource.owner_id)
