"""
Role resolution - the single place that decides who the caller is
"""

from typing import Iterable, Optional

from .errors import NotFound
from .models import AdministratorView, Beneficiary, Role, RoleKind

NO_ROLE = Role(RoleKind.NONE)


def resolve_role(
    identity: Optional[str],
    administrator_view: object,
    beneficiaries: Optional[Iterable[Beneficiary]],
) -> Role:
    """
    Interpret already-fetched results. Never performs I/O.

    Administrator takes precedence over a beneficiary entry for the same
    identity.

    Args:
        identity: Caller wallet address, or None when no wallet is connected
        administrator_view: AdministratorView if that query succeeded, else
            None or the error it failed with
        beneficiaries: Beneficiary list of the relevant cycle, if loaded

    Returns:
        Role
    """
    if not identity:
        return NO_ROLE
    if isinstance(administrator_view, AdministratorView):
        return Role(RoleKind.ADMINISTRATOR)
    for beneficiary in beneficiaries or ():
        if beneficiary.wallet == identity:
            return Role(RoleKind.BENEFICIARY, index=beneficiary.index)
    return NO_ROLE


class RoleResolver:
    """
    Gathers the inputs of resolve_role through the query layer.

    Example:
        >>> role = await RoleResolver(orchestrator).resolve(wallet)
        >>> role.is_administrator
        False
    """

    def __init__(self, orchestrator):
        self.orchestrator = orchestrator

    async def resolve(self, identity: Optional[str]) -> Role:
        if not identity:
            return NO_ROLE
        admin = None
        try:
            admin = await self.orchestrator.administrator_view(identity)
        except NotFound:
            pass

        config_address = admin.config_address if admin is not None else None
        if config_address is None:
            try:
                view = await self.orchestrator.beneficiary_view(identity)
                config_address = view.config_address
            except NotFound:
                pass

        beneficiaries = []
        if config_address is not None:
            beneficiaries = await self.orchestrator.beneficiary_list(config_address)
        return resolve_role(identity, admin, beneficiaries)
