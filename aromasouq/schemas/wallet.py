from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
from decimal import Decimal
from datetime import datetime
from aromasouq import config
from aromasouq.models.wallet import CoinSource, CoinTransactionType


class RedeemCoinsRequest(BaseModel):
    amount: int = Field(..., ge=config.REDEEM_MIN_COINS, le=config.REDEEM_MAX_COINS)


class AwardCoinsRequest(BaseModel):
    user_id: int = Field(..., gt=0)
    amount: int = Field(..., ge=1)
    source: CoinSource
    description: Optional[str] = Field(None, max_length=255)
    order_id: Optional[int] = None
    product_id: Optional[int] = None
    review_id: Optional[int] = None


class SpendCoinsRequest(BaseModel):
    user_id: int = Field(..., gt=0)
    amount: int = Field(..., ge=1)
    order_id: Optional[int] = None
    description: Optional[str] = Field(None, max_length=255)


class ExpiryResponse(BaseModel):
    message: str
    transactions_expired: int
    coins_expired: int


class ReconciliationResponse(BaseModel):
    resolved: int
    retried: int
    failed: int


class WalletResponse(BaseModel):
    id: int
    user_id: int
    balance: int
    lifetime_earned: int
    lifetime_spent: int
    available_balance: int
    coins_expiring_soon: int

    model_config = ConfigDict(from_attributes=True)


class CoinTransactionResponse(BaseModel):
    id: int
    amount: int
    type: CoinTransactionType
    source: CoinSource
    description: Optional[str] = None
    balance_after: int
    expires_at: Optional[datetime] = None
    expired_amount: Optional[int] = None
    order_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class CoinTransactionPage(BaseModel):
    data: List[CoinTransactionResponse]
    meta: PageMeta


class SourceEarnings(BaseModel):
    source: CoinSource
    amount: int


class WalletStatsResponse(BaseModel):
    total_earned: int
    total_spent: int
    total_expired: int
    current_balance: int
    transaction_count: int
    earnings_by_source: List[SourceEarnings]


class RedeemedCoupon(BaseModel):
    code: str
    value: Decimal
    expires_at: datetime


class RedeemCoinsResponse(BaseModel):
    message: str
    coupon: RedeemedCoupon


class LedgerEntryResponse(BaseModel):
    balance: int
    transaction: CoinTransactionResponse
