from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from truststartup.auth.deps import get_current_user
from truststartup.core.db import get_db
from truststartup.models.user import User
from truststartup.schemas.sponsorship import CheckoutRequest, CheckoutResponse
from truststartup.services import payments as payments_service
from truststartup.services.payments import WebhookVerificationError

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/sponsor-checkout", response_model=CheckoutResponse, status_code=status.HTTP_200_OK)
def create_sponsor_checkout(
    payload: CheckoutRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CheckoutResponse:
    return payments_service.create_sponsor_checkout(db, payload, current_user)


@router.post("/stripe/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)) -> JSONResponse:
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    try:
        event = payments_service.parse_webhook_event(payload, signature)
    except WebhookVerificationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    outcome = await run_in_threadpool(payments_service.handle_stripe_event, db, event)
    return JSONResponse(
        status_code=outcome.http_status,
        content={"received": True, "status": outcome.status},
    )
