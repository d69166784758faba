from typing import Optional
import logging

from ipc_ledger import config
from ipc_ledger.auth import AuthenticatedUser

logger = logging.getLogger(__name__)


class PermissionDeniedError(Exception):
    """Raised when a user lacks the role an action requires"""
    pass


class PermissionChecker:
    """
    Capability checks used to decide which actions are offered.

    RULES:
    1. Previous-value corrections: ContractsManager, QuantitySurveyor, Admin
    2. The backend re-checks every request and is the authority
    """

    def __init__(self, correction_roles=config.CORRECTION_ROLES):
        self.correction_roles = tuple(correction_roles)

    def can_correct_previous_values(self, user: Optional[AuthenticatedUser]) -> bool:
        return bool(user and user.role in self.correction_roles)

    def check_correction_role(self, user: Optional[AuthenticatedUser]) -> bool:
        """Raise PermissionDeniedError if the user may not correct previous values."""
        if not self.can_correct_previous_values(user):
            role = user.role if user else None
            logger.warning(f"[PERMISSION] Correction refused for role {role!r}")
            raise PermissionDeniedError(
                "Only Contracts Managers, Quantity Surveyors and Admins can correct previous values"
            )
        return True
