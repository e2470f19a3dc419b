from fastapi import APIRouter, Depends, File, Request, Response, UploadFile, status
from sqlalchemy.orm import Session
from typing import List, Optional

from app.core.limiter import limiter
from app.database import get_db
from app.models.liquidation import LiquidationStatus
from app.schemas.liquidation import (
    LiquidationAttachmentResponse,
    LiquidationCreate,
    LiquidationOwnUpdate,
    LiquidationResponse,
    LiquidationReviewRequest,
    LiquidationUpdate,
)
from app.routers.auth_deps import get_auth_context
from app.services.authorization import AuthContext
from app.services.liquidation_service import LiquidationService

router = APIRouter(
    prefix="/liquidations",
    tags=["Liquidations"]
)


@router.post("", response_model=LiquidationResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def file_liquidation(
    request: Request,
    payload: LiquidationCreate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return LiquidationService(db).create(
        ctx,
        cash_advance_id=payload.cash_advance_id,
        store_id=payload.store_id,
        liquidation_date=payload.liquidation_date,
        items=[item.model_dump() for item in payload.items],
        ticket_id=payload.ticket_id,
        remarks=payload.remarks,
    )


@router.get("", response_model=List[LiquidationResponse])
def list_liquidations(
    status: Optional[LiquidationStatus] = None,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return LiquidationService(db).list(ctx, status=status)


@router.get("/{liquidation_id}", response_model=LiquidationResponse)
def get_liquidation(
    liquidation_id: int,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return LiquidationService(db).get(ctx, liquidation_id)


@router.post("/{liquidation_id}/review", response_model=LiquidationResponse)
@limiter.limit("30/minute")
def review_liquidation(
    request: Request,
    liquidation_id: int,
    payload: LiquidationReviewRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return LiquidationService(db).review(ctx, liquidation_id, payload.action, payload.comment)


@router.put("/{liquidation_id}", response_model=LiquidationResponse)
def edit_liquidation(
    liquidation_id: int,
    payload: LiquidationUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return LiquidationService(db).edit(ctx, liquidation_id, payload.model_dump(exclude_unset=True))


@router.delete("/{liquidation_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_liquidation(
    liquidation_id: int,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    LiquidationService(db).delete(ctx, liquidation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{liquidation_id}/own", response_model=LiquidationResponse)
def edit_own_liquidation(
    liquidation_id: int,
    payload: LiquidationOwnUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Requester edit of a pending liquidation; sending items recomputes the amounts."""
    return LiquidationService(db).edit_own(ctx, liquidation_id, payload.model_dump(exclude_unset=True))


@router.post(
    "/{liquidation_id}/receipts",
    response_model=List[LiquidationAttachmentResponse],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("10/minute")
def upload_receipts(
    request: Request,
    liquidation_id: int,
    files: List[UploadFile] = File(...),
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    receipts = [(f.filename, f.content_type, f.file.read()) for f in files]
    return LiquidationService(db).upload_receipts(ctx, liquidation_id, receipts)
