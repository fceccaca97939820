import logging
from fastapi import APIRouter, Depends

from donation_ledger.api.auth import require_admin
from donation_ledger.api.routers import aggregation_response, campaign_response
from donation_ledger.api.schemas import (
    AggregationResponse,
    CampaignCreateRequest,
    CampaignResponse,
    CampaignStatusRequest,
    CampaignUpdateRequest,
    CognitoUser,
    ManualDonationRequest,
)
from donation_ledger.core.dependencies import get_campaign_service, get_donation_service
from donation_ledger.services.campaign_service import CampaignService
from donation_ledger.services.donation_service import DonationService

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])
logger = logging.getLogger(__name__)


@router.post("/campaigns", response_model=CampaignResponse, status_code=201)
def create_campaign(
    body: CampaignCreateRequest,
    admin: CognitoUser = Depends(require_admin),
    campaign_service: CampaignService = Depends(get_campaign_service)
):
    campaign = campaign_service.create_campaign(
        campaign_id=body.campaign_id,
        title=body.title,
        goal_amount=body.goal_amount,
        currency=body.currency,
        status=body.status,
        start_at=body.start_at,
        end_at=body.end_at,
        created_by=admin.email
    )
    return campaign_response(campaign)


@router.patch("/campaigns/{campaign_id}", response_model=CampaignResponse)
def update_campaign(
    campaign_id: str,
    body: CampaignUpdateRequest,
    campaign_service: CampaignService = Depends(get_campaign_service)
):
    # Dates may be cleared with null; title and goal may not.
    changes = {
        field: value for field, value in body.model_dump(exclude_unset=True).items()
        if value is not None or field in ("start_at", "end_at")
    }
    return campaign_response(campaign_service.update_campaign(campaign_id, changes))


@router.post("/campaigns/{campaign_id}/status", response_model=CampaignResponse)
def set_campaign_status(
    campaign_id: str,
    body: CampaignStatusRequest,
    campaign_service: CampaignService = Depends(get_campaign_service)
):
    return campaign_response(campaign_service.set_status(campaign_id, body.status))


@router.post("/campaigns/{campaign_id}/recompute", response_model=CampaignResponse)
def recompute_campaign(
    campaign_id: str,
    campaign_service: CampaignService = Depends(get_campaign_service)
):
    return campaign_response(campaign_service.recompute_aggregates(campaign_id))


@router.post("/campaigns/{campaign_id}/donations", response_model=AggregationResponse, status_code=201)
def add_manual_donation(
    campaign_id: str,
    body: ManualDonationRequest,
    admin: CognitoUser = Depends(require_admin),
    donation_service: DonationService = Depends(get_donation_service)
):
    logger.info(f"Admin {admin.email} recording manual donation for {campaign_id}")
    result = donation_service.record_manual_donation(
        campaign_id=campaign_id,
        amount=body.amount,
        currency=body.currency,
        donor=body.donor,
        message=body.message,
        payment_ref=body.payment_ref,
        status=body.status
    )
    return aggregation_response(result)
