import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from typing import List, Optional

from greenpoints.schemas.voucher import VoucherResponse
from greenpoints.schemas.redemption import RedemptionResponse
from greenpoints.schemas.transaction import (
    AuditReport, AwardPointsRequest, PointsBalance, TransactionResponse,
)
from greenpoints.services.redemption_service import RedemptionService

router = APIRouter(prefix="", tags=["rewards"])


def get_service(request: Request) -> RedemptionService:
    return request.app.state.redemption_service


# The auth layer in front of this service puts the session's user id here
def get_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    return x_user_id


# Points are granted by trusted collaborators (waste classification, streaks), never by the user
def require_award_key(request: Request, x_award_key: Optional[str] = Header(None)) -> None:
    expected = request.app.state.settings.award_api_key
    if not expected:
        raise HTTPException(status_code=403, detail="Point awards are disabled")
    if not x_award_key or not hmac.compare_digest(x_award_key.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid award key")


@router.get("/vouchers", response_model=List[VoucherResponse])
def list_vouchers(category: Optional[str] = None, service: RedemptionService = Depends(get_service)):
    if category:
        return service.catalog.list_by_category(category)
    return service.catalog.list_active()


@router.get("/vouchers/available", response_model=List[VoucherResponse])
def list_available_vouchers(
    user_id: str = Depends(get_user_id),
    service: RedemptionService = Depends(get_service),
):
    return service.available_vouchers(user_id)


@router.get("/vouchers/{voucher_id}", response_model=VoucherResponse)
def get_voucher(voucher_id: str, service: RedemptionService = Depends(get_service)):
    return service.catalog.get_by_id(voucher_id)


@router.post("/vouchers/{voucher_id}/redeem", response_model=RedemptionResponse, status_code=201)
def redeem_voucher(
    voucher_id: str,
    user_id: str = Depends(get_user_id),
    service: RedemptionService = Depends(get_service),
):
    return service.redeem(voucher_id, user_id)


@router.get("/redemptions", response_model=List[RedemptionResponse])
def list_redemptions(
    user_id: str = Depends(get_user_id),
    service: RedemptionService = Depends(get_service),
):
    return service.list_redemptions(user_id)


@router.get("/redemptions/code/{voucher_code}", response_model=RedemptionResponse)
def validate_voucher_code(voucher_code: str, service: RedemptionService = Depends(get_service)):
    redemption = service.validate_code(voucher_code)
    if not redemption:
        raise HTTPException(status_code=404, detail="Voucher code is invalid or expired")
    return redemption


@router.post("/redemptions/{redemption_id}/use", response_model=RedemptionResponse)
def use_redemption(
    redemption_id: str,
    user_id: str = Depends(get_user_id),
    service: RedemptionService = Depends(get_service),
):
    redemption = service.get_redemption(redemption_id)
    if redemption.user_id != user_id:
        raise HTTPException(status_code=404, detail="Redemption not found")
    return service.mark_used(redemption_id)


@router.get("/points", response_model=PointsBalance)
def get_points(user_id: str = Depends(get_user_id), service: RedemptionService = Depends(get_service)):
    return PointsBalance(user_id=user_id, points=service.ledger.get_balance(user_id))


@router.post("/points", response_model=PointsBalance, dependencies=[Depends(require_award_key)])
def award_points(
    payload: AwardPointsRequest,
    user_id: str = Depends(get_user_id),
    service: RedemptionService = Depends(get_service),
):
    balance = service.award_points(
        user_id, payload.points, payload.description, payload.metadata, type=payload.type,
    )
    return PointsBalance(user_id=user_id, points=balance)


@router.get("/transactions", response_model=List[TransactionResponse])
def list_transactions(
    limit: int = 100,
    user_id: str = Depends(get_user_id),
    service: RedemptionService = Depends(get_service),
):
    return service.log.list_for_user(user_id, limit)


@router.get("/transactions/audit", response_model=AuditReport)
def audit_transactions(user_id: str = Depends(get_user_id), service: RedemptionService = Depends(get_service)):
    return service.log.audit(user_id, service.ledger)
