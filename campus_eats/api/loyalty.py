"""
Campus Eats — Loyalty API
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.api.deps import get_current_user
from campus_eats.core.errors import BusinessRuleError, NotFoundError
from campus_eats.core.security import CurrentUser
from campus_eats.db.database import get_db
from campus_eats.db import loyalty_ops
from campus_eats.schemas.loyalty import (
    LoyaltyAccountResponse,
    LoyaltyTransactionResponse,
    RedeemPointsRequest,
    RedeemPointsResult,
)

router = APIRouter(prefix="/loyalty", tags=["loyalty"])


@router.get("/account", response_model=LoyaltyAccountResponse)
async def get_account(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Current balance. Users who have never earned points read as 0."""
    account = await loyalty_ops.get_account(db, user.user_id)
    if account is None:
        return LoyaltyAccountResponse(user_id=user.user_id, points=0)
    return account


@router.get("/transactions", response_model=list[LoyaltyTransactionResponse])
async def list_transactions(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await loyalty_ops.list_transactions(db, user.user_id)


@router.post("/redeem", response_model=RedeemPointsResult)
async def redeem_points(
    payload: RedeemPointsRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        account = await loyalty_ops.redeem(db, user.user_id, payload.points, payload.description)
    except (NotFoundError, BusinessRuleError) as exc:
        return RedeemPointsResult(success=False, message=exc.message)
    return RedeemPointsResult(
        success=True,
        message="Points redeemed successfully",
        remaining_points=account.points,
    )
