
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from aromasouq.database import get_db
from aromasouq.routers.deps import current_user_id
from aromasouq.schemas.wallet import (
    WalletResponse, CoinTransactionPage, WalletStatsResponse, RedeemCoinsRequest, RedeemCoinsResponse,
    RedeemedCoupon, AwardCoinsRequest, SpendCoinsRequest, LedgerEntryResponse, ExpiryResponse,
    ReconciliationResponse, CoinTransactionResponse,
)
from aromasouq.services.reconciliation_service import ReconciliationService
from aromasouq.services.wallet_service import WalletService, LedgerEntry

router = APIRouter(prefix="/wallet", tags=["wallet"])


def _entry_response(entry: LedgerEntry) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        balance=entry.transaction.balance_after,
        transaction=CoinTransactionResponse.model_validate(entry.transaction),
    )


@router.get("", response_model=WalletResponse)
def get_wallet(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return WalletService.get_wallet(db, user_id)


@router.get("/transactions", response_model=CoinTransactionPage)
def get_transactions(page: int = 1, limit: int = 20, user_id: int = Depends(current_user_id),
                     db: Session = Depends(get_db)):
    return WalletService.get_transactions(db, user_id, page, limit)


@router.get("/stats", response_model=WalletStatsResponse)
def get_stats(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return WalletService.get_stats(db, user_id)


@router.post("/redeem", response_model=RedeemCoinsResponse)
def redeem_coins(payload: RedeemCoinsRequest, user_id: int = Depends(current_user_id),
                 db: Session = Depends(get_db)):
    result = WalletService.redeem_coins(db, user_id, payload.amount)
    return RedeemCoinsResponse(
        message=result.message,
        coupon=RedeemedCoupon(code=result.coupon.code, value=result.value, expires_at=result.expires_at),
    )


# Back-office operations
@router.post("/award", response_model=LedgerEntryResponse)
def award_coins(payload: AwardCoinsRequest, db: Session = Depends(get_db)):
    entry = WalletService.award_coins(
        db, payload.user_id, payload.amount, payload.source,
        description=payload.description, order_id=payload.order_id,
        product_id=payload.product_id, review_id=payload.review_id,
    )
    return _entry_response(entry)


@router.post("/spend", response_model=LedgerEntryResponse)
def spend_coins(payload: SpendCoinsRequest, db: Session = Depends(get_db)):
    entry = WalletService.spend_coins(
        db, payload.user_id, payload.amount, order_id=payload.order_id, description=payload.description,
    )
    return _entry_response(entry)


@router.post("/expire-old-coins", response_model=ExpiryResponse)
def expire_old_coins(db: Session = Depends(get_db)):
    result = WalletService.expire_old_coins(db)
    return ExpiryResponse(
        message=result.message,
        transactions_expired=result.transactions_expired,
        coins_expired=result.coins_expired,
    )


@router.post("/reconcile", response_model=ReconciliationResponse)
def reconcile(db: Session = Depends(get_db)):
    result = ReconciliationService.replay_pending(db)
    return ReconciliationResponse(resolved=result.resolved, retried=result.retried, failed=result.failed)
