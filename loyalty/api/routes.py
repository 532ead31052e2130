"""
API Routes - FastAPI endpoints for ledger and redemption operations.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.api.dependencies import (
    get_catalog,
    get_ledger,
    get_redemption_workflow,
    get_transaction_log,
    get_voucher_store,
)
from loyalty.db.session import get_write_db
from loyalty.exceptions import (
    ForbiddenError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidRewardError,
    InvalidTransitionError,
    InvariantViolationError,
    LoyaltyError,
    NotFoundError,
    RewardInactiveError,
    TierTooLowError,
)
from loyalty.models.api import (
    AccountResponse,
    ActivityItem,
    ActivityListResponse,
    AddPointsRequest,
    AddPointsResponse,
    BalanceResponse,
    CreateRedeemRequestRequest,
    CreateRewardRequest,
    HealthResponse,
    LedgerTransactionListResponse,
    OpenAccountRequest,
    ProcessRedeemRequestRequest,
    ProcessRedeemRequestResponse,
    RedeemRequestListResponse,
    RedeemRequestResponse,
    RedeemRequestStatus,
    RedeemRewardRequest,
    RedemptionResponse,
    RewardCatalogItem,
    RewardCatalogResponse,
    RewardListResponse,
    RewardResponse,
    TransactionItem,
    TransactionListResponse,
    TransactionStatsResponse,
    TransactionType,
    UseVoucherRequest,
    VoucherListResponse,
    VoucherResponse,
)
from loyalty.models.domain import (
    AccountData,
    ActivityEntry,
    Actor,
    BalanceSnapshot,
    RedeemRequestData,
    RewardData,
    RewardSummary,
    TransactionData,
    VoucherData,
)
from loyalty.observability.logging import get_logger
from loyalty.services.activity import list_recent_activity
from loyalty.services.catalog import RewardCatalog
from loyalty.services.ledger import AccountLedger
from loyalty.services.redemption import RedemptionWorkflow
from loyalty.services.transactions import TransactionLog
from loyalty.services.vouchers import VoucherStore

logger = get_logger(__name__)

router = APIRouter()


def http_error(exc: LoyaltyError) -> HTTPException:
    """
    Map a ledger error to an HTTP error.

    Invariant violations are server faults; their message stays in the logs.
    """
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (ForbiddenError, TierTooLowError)):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, (InvalidAmountError, InvalidRewardError)):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, InsufficientBalanceError):
        return HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(exc))
    if isinstance(exc, (RewardInactiveError, InvalidTransitionError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, InvariantViolationError):
        logger.error("ledger_integrity_error", error=str(exc))
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Ledger integrity error",
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error"
    )


# =============================================================================
# Response builders
# =============================================================================


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _account_response(account: AccountData) -> AccountResponse:
    return AccountResponse(
        account_id=account.account_id,
        display_name=account.display_name,
        points=account.points,
        highest_points=account.highest_points,
        tier=account.tier,
        tier_updated_at=_isoformat(account.tier_updated_at),
        created_at=account.created_at.isoformat(),
    )


def _balance_response(balance: BalanceSnapshot) -> BalanceResponse:
    return BalanceResponse(
        account_id=balance.account_id,
        balance=balance.balance,
        highest_points=balance.highest_points,
        tier=balance.tier,
    )


def _reward_response(reward: RewardData) -> RewardResponse:
    return RewardResponse(
        reward_id=reward.reward_id,
        title=reward.title,
        description=reward.description,
        points_cost=reward.points_cost,
        is_active=reward.is_active,
        minimum_tier=reward.minimum_tier,
    )


def _catalog_item(summary: RewardSummary) -> RewardCatalogItem:
    reward = summary.reward
    return RewardCatalogItem(
        reward_id=reward.reward_id,
        title=reward.title,
        description=reward.description,
        points_cost=reward.points_cost,
        is_active=reward.is_active,
        minimum_tier=reward.minimum_tier,
        redemption_count=summary.redemption_count,
    )


def _activity_item(entry: ActivityEntry) -> ActivityItem:
    return ActivityItem(
        entry_id=entry.entry_id,
        actor_id=entry.actor_id,
        actor_role=entry.actor_role,
        target_id=entry.target_id,
        target_role=entry.target_role,
        description=entry.description,
        points_delta=entry.points_delta,
        created_at=entry.created_at.isoformat(),
    )


def _voucher_response(voucher: VoucherData) -> VoucherResponse:
    return VoucherResponse(
        voucher_id=voucher.voucher_id,
        account_id=voucher.account_id,
        reward_id=voucher.reward_id,
        status=voucher.status,
        redeemed_at=voucher.redeemed_at.isoformat(),
        used_at=_isoformat(voucher.used_at),
    )


def _request_response(request: RedeemRequestData) -> RedeemRequestResponse:
    return RedeemRequestResponse(
        request_id=request.request_id,
        account_id=request.account_id,
        reward_id=request.reward_id,
        points_reserved=request.points_reserved,
        status=request.status,
        voucher_id=request.voucher_id,
        processed_by=request.processed_by,
        notes=request.notes,
        requested_at=request.requested_at.isoformat(),
        processed_at=_isoformat(request.processed_at),
    )


def _transaction_item(transaction: TransactionData) -> TransactionItem:
    return TransactionItem(
        transaction_id=transaction.transaction_id,
        account_id=transaction.account_id,
        type=transaction.transaction_type,
        amount=transaction.amount,
        reward_id=transaction.reward_id,
        description=transaction.description,
        purchase_amount=transaction.purchase_amount,
        created_at=transaction.created_at.isoformat(),
    )


# =============================================================================
# Accounts
# =============================================================================


@router.post(
    "/v1/accounts",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
)
async def open_account(
    request: OpenAccountRequest,
    ledger: AccountLedger = Depends(get_ledger),
) -> AccountResponse:
    """Open an account with zero points at Bronze."""
    try:
        account = await ledger.open_account(request.display_name)
    except LoyaltyError as exc:
        raise http_error(exc) from exc
    return _account_response(account)


@router.get("/v1/accounts/{account_id}", response_model=AccountResponse)
async def get_account(
    account_id: UUID,
    ledger: AccountLedger = Depends(get_ledger),
) -> AccountResponse:
    """Get balance, watermark and tier of an account."""
    try:
        account = await ledger.get_account(account_id)
    except LoyaltyError as exc:
        raise http_error(exc) from exc
    return _account_response(account)


@router.post(
    "/v1/accounts/{account_id}/points",
    response_model=AddPointsResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_points(
    account_id: UUID,
    request: AddPointsRequest,
    ledger: AccountLedger = Depends(get_ledger),
) -> AddPointsResponse:
    """
    Credit points to an account.

    Raises the highest-points watermark, and with it the tier, when the new
    balance exceeds it.
    """
    try:
        result = await ledger.add_points(
            account_id,
            request.amount,
            description=request.description,
            purchase_amount=request.purchase_amount,
            actor=Actor(actor_id=request.actor_id, role=request.actor_role),
        )
    except LoyaltyError as exc:
        raise http_error(exc) from exc

    return AddPointsResponse(
        transaction_id=result.transaction.transaction_id,
        balance=_balance_response(result.balance),
        purchase_amount=result.transaction.purchase_amount,
    )


@router.get("/v1/accounts/{account_id}/transactions", response_model=TransactionListResponse)
async def list_transactions(
    account_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    ledger: AccountLedger = Depends(get_ledger),
    transactions: TransactionLog = Depends(get_transaction_log),
) -> TransactionListResponse:
    """Transaction history for an account, newest first."""
    try:
        await ledger.get_account(account_id)
    except LoyaltyError as exc:
        raise http_error(exc) from exc

    entries = await transactions.list_for_account(account_id, limit=limit)
    return TransactionListResponse(
        transactions=[_transaction_item(entry) for entry in entries],
        total_count=await transactions.count(account_id),
    )


@router.get(
    "/v1/accounts/{account_id}/transactions/stats",
    response_model=TransactionStatsResponse,
)
async def transaction_stats(
    account_id: UUID,
    ledger: AccountLedger = Depends(get_ledger),
    transactions: TransactionLog = Depends(get_transaction_log),
) -> TransactionStatsResponse:
    """Points earned, spent and refunded, and rewards redeemed."""
    try:
        await ledger.get_account(account_id)
    except LoyaltyError as exc:
        raise http_error(exc) from exc

    stats = await transactions.stats(account_id)
    return TransactionStatsResponse(
        total_transactions=stats.total_transactions,
        points_earned=stats.points_earned,
        points_spent=stats.points_spent,
        points_refunded=stats.points_refunded,
        rewards_redeemed=stats.rewards_redeemed,
    )


@router.get("/v1/accounts/{account_id}/rewards/available", response_model=RewardListResponse)
async def list_available_rewards(
    account_id: UUID,
    ledger: AccountLedger = Depends(get_ledger),
    catalog: RewardCatalog = Depends(get_catalog),
) -> RewardListResponse:
    """Active rewards the account can afford and whose tier gate it meets."""
    try:
        account = await ledger.get_account(account_id)
    except LoyaltyError as exc:
        raise http_error(exc) from exc

    rewards = await catalog.list_available(account.highest_points, account.points)
    return RewardListResponse(rewards=[_reward_response(reward) for reward in rewards])


@router.get("/v1/accounts/{account_id}/vouchers", response_model=VoucherListResponse)
async def list_vouchers(
    account_id: UUID,
    ledger: AccountLedger = Depends(get_ledger),
    vouchers: VoucherStore = Depends(get_voucher_store),
) -> VoucherListResponse:
    """Vouchers held by an account, most recently issued first."""
    try:
        await ledger.get_account(account_id)
    except LoyaltyError as exc:
        raise http_error(exc) from exc

    held = await vouchers.list_for_account(account_id)
    return VoucherListResponse(vouchers=[_voucher_response(voucher) for voucher in held])


@router.post(
    "/v1/accounts/{account_id}/redemptions",
    response_model=RedemptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def redeem_reward(
    account_id: UUID,
    request: RedeemRewardRequest,
    workflow: RedemptionWorkflow = Depends(get_redemption_workflow),
) -> RedemptionResponse:
    """Spend points on a reward now and receive an active voucher."""
    try:
        result = await workflow.redeem_now(account_id, request.reward_id)
    except LoyaltyError as exc:
        raise http_error(exc) from exc

    return RedemptionResponse(
        transaction_id=result.transaction.transaction_id,
        balance=_balance_response(result.balance),
        voucher=_voucher_response(result.voucher),
    )


# =============================================================================
# Rewards
# =============================================================================


@router.post(
    "/v1/rewards",
    response_model=RewardResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_reward(
    request: CreateRewardRequest,
    catalog: RewardCatalog = Depends(get_catalog),
) -> RewardResponse:
    """Add a reward to the catalog."""
    try:
        reward = await catalog.add_reward(
            title=request.title,
            points_cost=request.points_cost,
            description=request.description,
            minimum_tier=request.minimum_tier,
            is_active=request.is_active,
        )
    except LoyaltyError as exc:
        raise http_error(exc) from exc
    return _reward_response(reward)


@router.get("/v1/rewards", response_model=RewardCatalogResponse)
async def list_rewards(
    include_inactive: bool = Query(True),
    catalog: RewardCatalog = Depends(get_catalog),
) -> RewardCatalogResponse:
    """Full catalog with redemption counts, cheapest first."""
    summaries = await catalog.list_all(include_inactive=include_inactive)
    return RewardCatalogResponse(rewards=[_catalog_item(summary) for summary in summaries])


@router.get("/v1/rewards/{reward_id}", response_model=RewardResponse)
async def get_reward(
    reward_id: UUID,
    catalog: RewardCatalog = Depends(get_catalog),
) -> RewardResponse:
    """Get a reward."""
    try:
        reward = await catalog.get(reward_id)
    except LoyaltyError as exc:
        raise http_error(exc) from exc
    return _reward_response(reward)


@router.post("/v1/rewards/{reward_id}/deactivate", response_model=RewardResponse)
async def deactivate_reward(
    reward_id: UUID,
    catalog: RewardCatalog = Depends(get_catalog),
) -> RewardResponse:
    """Soft-delete a reward so it can no longer be redeemed."""
    try:
        reward = await catalog.deactivate(reward_id)
    except LoyaltyError as exc:
        raise http_error(exc) from exc
    return _reward_response(reward)


# =============================================================================
# Redeem requests
# =============================================================================


@router.post(
    "/v1/redeem-requests",
    response_model=RedeemRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_redeem_request(
    request: CreateRedeemRequestRequest,
    workflow: RedemptionWorkflow = Depends(get_redemption_workflow),
) -> RedeemRequestResponse:
    """Reserve points for a reward pending staff review."""
    try:
        result = await workflow.create_request(request.account_id, request.reward_id)
    except LoyaltyError as exc:
        raise http_error(exc) from exc
    return _request_response(result.request)


@router.get("/v1/redeem-requests", response_model=RedeemRequestListResponse)
async def list_redeem_requests(
    status_filter: RedeemRequestStatus | None = Query(None, alias="status"),
    account_id: UUID | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    workflow: RedemptionWorkflow = Depends(get_redemption_workflow),
) -> RedeemRequestListResponse:
    """Redeem requests, newest first."""
    requests = await workflow.list_requests(
        status=status_filter, account_id=account_id, limit=limit
    )
    return RedeemRequestListResponse(requests=[_request_response(r) for r in requests])


@router.post(
    "/v1/redeem-requests/{request_id}/process",
    response_model=ProcessRedeemRequestResponse,
)
async def process_redeem_request(
    request_id: UUID,
    request: ProcessRedeemRequestRequest,
    workflow: RedemptionWorkflow = Depends(get_redemption_workflow),
) -> ProcessRedeemRequestResponse:
    """Approve (issue voucher) or reject (refund points) a pending request."""
    try:
        result = await workflow.process(
            request_id, request.action, staff_id=request.staff_id, notes=request.notes
        )
    except LoyaltyError as exc:
        raise http_error(exc) from exc

    return ProcessRedeemRequestResponse(
        request=_request_response(result.request),
        voucher=_voucher_response(result.voucher) if result.voucher else None,
        balance=_balance_response(result.balance) if result.balance else None,
    )


# =============================================================================
# Vouchers
# =============================================================================


@router.post("/v1/vouchers/{voucher_id}/use", response_model=VoucherResponse)
async def use_voucher(
    voucher_id: UUID,
    request: UseVoucherRequest,
    workflow: RedemptionWorkflow = Depends(get_redemption_workflow),
) -> VoucherResponse:
    """Mark a voucher used. A voucher can be used once."""
    try:
        voucher = await workflow.use_voucher(voucher_id, request.account_id)
    except LoyaltyError as exc:
        raise http_error(exc) from exc
    return _voucher_response(voucher)


# =============================================================================
# Staff views
# =============================================================================


@router.get("/v1/transactions", response_model=LedgerTransactionListResponse)
async def list_all_transactions(
    account_id: UUID | None = Query(None),
    transaction_type: TransactionType | None = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=500),
    transactions: TransactionLog = Depends(get_transaction_log),
) -> LedgerTransactionListResponse:
    """Transactions across all accounts, newest first."""
    entries = await transactions.list_all(
        account_id=account_id, transaction_type=transaction_type, limit=limit
    )
    return LedgerTransactionListResponse(
        transactions=[_transaction_item(entry) for entry in entries]
    )


@router.get("/v1/activity", response_model=ActivityListResponse)
async def list_activity(
    target_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_write_db),
) -> ActivityListResponse:
    """Recent staff and customer activity, newest first."""
    entries = await list_recent_activity(db, limit=limit, target_id=target_id)
    return ActivityListResponse(entries=[_activity_item(entry) for entry in entries])


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_write_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
    )
