from fastapi import (
    APIRouter,
    Request,
    Header,
    Depends,
    HTTPException
)
from starlette.concurrency import run_in_threadpool
import math
import stripe
import logging

from donation_ledger.api.schemas import (
    AggregationResponse,
    CampaignResponse,
    DonationConfirmation,
    DonationIntentRequest,
    DonationIntentResponse,
    PayPalConfirmation,
    PayPalOrderRequest,
    PayPalOrderResponse,
    WebhookResponse,
)
from donation_ledger.core.dependencies import get_campaign_service, get_donation_service, get_rate_limiter
from donation_ledger.core.rate_limit import RateLimiter
from donation_ledger.models.campaign import Campaign
from donation_ledger.services.aggregator import AggregationResult
from donation_ledger.services.campaign_service import CampaignService
from donation_ledger.services.donation_service import DonationService

router = APIRouter()
logger = logging.getLogger(__name__)


def rate_limited(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> None:
    client = request.client.host if request.client else "unknown"
    decision = limiter.check(f"{client}:{request.url.path}")
    if not decision.allowed:
        logger.warning(f"Rate limit exceeded for {client} on {request.url.path}")
        raise HTTPException(
            status_code=429,
            detail="Too many requests",
            headers={"Retry-After": str(math.ceil(decision.retry_after_seconds))}
        )


def campaign_response(campaign: Campaign) -> CampaignResponse:
    return CampaignResponse(**campaign.model_dump(include=set(CampaignResponse.model_fields)))


def aggregation_response(result: AggregationResult) -> AggregationResponse:
    return AggregationResponse(
        outcome=result.outcome.value,
        payment_ref=result.payment_ref,
        campaign_id=result.campaign_id,
        total_donated=result.total_donated,
        donors_count=result.donors_count,
        donation_id=result.donation_id,
    )


@router.get(
    "/campaigns/{campaign_id}",
    response_model=CampaignResponse
)
def get_campaign(campaign_id: str, campaign_service: CampaignService = Depends(get_campaign_service)):
    return campaign_response(campaign_service.get_campaign(campaign_id))


@router.post(
    "/donations/create-intent",
    response_model=DonationIntentResponse,
    dependencies=[Depends(rate_limited)]
)
def create_donation_intent(
    body: DonationIntentRequest,
    donation_service: DonationService = Depends(get_donation_service)
):
    intent = donation_service.create_stripe_intent(
        campaign_id=body.campaign_id,
        amount=body.amount,
        currency=body.currency,
        donor=body.donor,
        email=body.email
    )
    return DonationIntentResponse(**intent)


@router.post(
    "/donations/paypal/create-order",
    response_model=PayPalOrderResponse,
    dependencies=[Depends(rate_limited)]
)
def create_paypal_order(
    body: PayPalOrderRequest,
    donation_service: DonationService = Depends(get_donation_service)
):
    order = donation_service.create_paypal_order(
        campaign_id=body.campaign_id,
        amount=body.amount,
        currency=body.currency,
        donor=body.donor
    )
    return PayPalOrderResponse(**order)


@router.post(
    "/donations/confirm",
    response_model=AggregationResponse,
    dependencies=[Depends(rate_limited)]
)
def confirm_donation(
    body: DonationConfirmation,
    donation_service: DonationService = Depends(get_donation_service)
):
    """
    Called by the browser once checkout completes. Amount and status are
    re-read from the payment processor; nothing in the body is trusted
    beyond the reference.
    """
    if isinstance(body, PayPalConfirmation):
        result = donation_service.confirm_paypal_order(
            order_id=body.order_id,
            campaign_id=body.campaign_id,
            donor=body.donor
        )
    else:
        result = donation_service.confirm_stripe_payment(
            payment_intent_id=body.payment_intent_id,
            campaign_id=body.campaign_id
        )
    return aggregation_response(result)


@router.post("/webhooks/stripe", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    stripe_signature: str = Header(...),
    donation_service: DonationService = Depends(get_donation_service)
):
    """
    Receives webhook events from Stripe, validates them,
    and folds donation payments into the campaign totals.
    """
    payload = await request.body()

    try:
        # Storage calls and conflict retries block; keep them off the event loop.
        result = await run_in_threadpool(
            donation_service.handle_stripe_webhook,
            payload=payload,
            signature_header=stripe_signature
        )
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature")
    except ValueError as e:
        logger.warning(f"Webhook invalid payload: {e}")
        raise HTTPException(status_code=400, detail="Invalid payload")

    return WebhookResponse(outcome=result.outcome.value if result else None)
