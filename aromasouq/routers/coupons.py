
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from aromasouq.database import get_db
from aromasouq.routers.deps import current_user_id
from aromasouq.schemas.coupon import (
    CouponCreate, CouponUpdate, CouponResponse, CouponValidateRequest, CouponValidationResponse,
    CouponSummary, ActiveCouponResponse,
)
from aromasouq.services.coupon_service import CouponService

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.get("/public/vendor/{vendor_id}", response_model=List[ActiveCouponResponse])
def list_active_vendor_coupons(vendor_id: int, db: Session = Depends(get_db)):
    return CouponService.list_active_for_vendor(db, vendor_id)


@router.post("", response_model=CouponResponse, status_code=201)
def create_coupon(coupon: CouponCreate, user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return CouponService.create_coupon(db, user_id, coupon)


@router.get("", response_model=List[CouponResponse])
def list_coupons(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return CouponService.list_for_vendor(db, user_id)


@router.post("/validate", response_model=CouponValidationResponse)
def validate_coupon(payload: CouponValidateRequest, db: Session = Depends(get_db)):
    result = CouponService.validate(db, payload.code, payload.order_amount)
    return CouponValidationResponse(
        coupon=CouponSummary.model_validate(result.coupon),
        discount_amount=result.discount_amount,
        final_amount=result.final_amount,
    )


@router.get("/{coupon_id}", response_model=CouponResponse)
def get_coupon(coupon_id: int, db: Session = Depends(get_db)):
    return CouponService.get_coupon(db, coupon_id)


@router.put("/{coupon_id}", response_model=CouponResponse)
def update_coupon(coupon_id: int, payload: CouponUpdate, user_id: int = Depends(current_user_id),
                  db: Session = Depends(get_db)):
    return CouponService.update_coupon(db, coupon_id, user_id, payload)


@router.delete("/{coupon_id}", status_code=204)
def delete_coupon(coupon_id: int, user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    CouponService.deactivate_coupon(db, coupon_id, user_id)
    return
