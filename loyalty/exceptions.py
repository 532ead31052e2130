"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID


class LoyaltyError(Exception):
    """Base exception for all loyalty ledger errors."""

    pass


class NotFoundError(LoyaltyError):
    """Raised when an account, reward, request or voucher doesn't exist."""

    def __init__(self, resource: str, identifier: UUID | str) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource.capitalize()} not found: {identifier}")


class InvalidAmountError(LoyaltyError):
    """Raised when a point amount is not a positive integer."""

    def __init__(
        self, amount: object, field: str = "points", requirement: str = "a positive integer"
    ) -> None:
        self.amount = amount
        self.field = field
        super().__init__(f"Invalid {field} amount: {amount!r}. Must be {requirement}")


class InvalidRewardError(LoyaltyError):
    """Raised when a reward definition is missing a required field."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"Invalid reward {field}: {message}")


class InsufficientBalanceError(LoyaltyError):
    """Raised when an account holds fewer points than a debit requires."""

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient points. Balance: {balance}, Required: {required}")


class RewardInactiveError(LoyaltyError):
    """Raised when redeeming a reward that has been deactivated."""

    def __init__(self, reward_id: UUID) -> None:
        self.reward_id = reward_id
        super().__init__(f"Reward {reward_id} is not active")


class TierTooLowError(LoyaltyError):
    """Raised when the account tier is below the reward's minimum tier."""

    def __init__(self, current_tier: str, required_tier: str) -> None:
        self.current_tier = current_tier
        self.required_tier = required_tier
        super().__init__(
            f"Tier too low. Current tier: {current_tier}, Required tier: {required_tier}"
        )


class InvalidTransitionError(LoyaltyError):
    """Raised when a request or voucher is asked to make an illegal state change."""

    def __init__(
        self,
        entity: str,
        current_status: str,
        target_status: str,
        message: str | None = None,
    ) -> None:
        self.entity = entity
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            message or f"Invalid {entity} transition: {current_status} -> {target_status}"
        )


class AlreadyProcessedError(InvalidTransitionError):
    """Raised when approving or rejecting a request that is no longer pending."""

    def __init__(self, request_id: UUID, status: str) -> None:
        self.request_id = request_id
        self.status = status
        super().__init__(
            "redeem request",
            status,
            "processed",
            f"Redeem request {request_id} has already been {status}",
        )


class NotApprovedError(InvalidTransitionError):
    """Raised when using a voucher whose request has not been approved."""

    def __init__(self, request_id: UUID, status: str) -> None:
        self.request_id = request_id
        self.status = status
        super().__init__(
            "redeem request",
            status,
            "used",
            f"Redeem request {request_id} has not been approved (status: {status})",
        )


class AlreadyUsedError(InvalidTransitionError):
    """Raised when a voucher is used a second time."""

    def __init__(self, voucher_id: UUID) -> None:
        self.voucher_id = voucher_id
        super().__init__("voucher", "used", "used", f"Voucher {voucher_id} has already been used")


class ForbiddenError(LoyaltyError):
    """Raised when a caller acts on a resource owned by another account."""

    def __init__(self, resource: str, identifier: UUID | str) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource.capitalize()} {identifier} does not belong to this account")


class InvariantViolationError(LoyaltyError):
    """Raised when a ledger consistency check fails. Always a server-side defect."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Ledger invariant violated: {message}")
