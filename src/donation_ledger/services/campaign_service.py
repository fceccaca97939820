import logging
from datetime import datetime
from decimal import Decimal

from donation_ledger.core.currency import quantize_major
from donation_ledger.core.exceptions import CampaignNotFound, InvalidInput
from donation_ledger.data_access.dynamodb import DynamoDataAccess
from donation_ledger.models.campaign import Campaign, CampaignStatus
from donation_ledger.services.aggregator import DonationAggregator

logger = logging.getLogger(__name__)


class CampaignService:
    def __init__(self, data_access: DynamoDataAccess, aggregator: DonationAggregator, default_currency: str = "GBP"):
        self.data_access = data_access
        self.aggregator = aggregator
        self.default_currency = default_currency

    def create_campaign(
        self,
        campaign_id: str,
        title: str,
        goal_amount: Decimal,
        currency: str | None = None,
        status: CampaignStatus = "draft",
        start_at: datetime | None = None,
        end_at: datetime | None = None,
        created_by: str | None = None,
    ) -> Campaign:
        if start_at and end_at and end_at <= start_at:
            raise InvalidInput("end_at must be after start_at")

        currency = (currency or self.default_currency).upper()

        campaign = Campaign(
            campaign_id=campaign_id,
            title=title,
            goal_amount=quantize_major(goal_amount, currency),
            currency=currency,
            status=status,
            start_at=start_at,
            end_at=end_at,
            created_by=created_by,
        )
        self.data_access.create_campaign(campaign)
        logger.info(f"Created campaign {campaign_id} ({campaign.currency} {campaign.goal_amount}) by {created_by}")
        return campaign

    def get_campaign(self, campaign_id: str) -> Campaign:
        campaign = self.data_access.get_campaign(campaign_id)
        if campaign is None:
            raise CampaignNotFound(campaign_id)
        return campaign

    def update_campaign(self, campaign_id: str, changes: dict) -> Campaign:
        """Edits title, goal or dates; totals are only ever changed by the aggregator."""
        if not changes:
            raise InvalidInput("Nothing to update")
        current = self.get_campaign(campaign_id)

        start_at = changes.get("start_at", current.start_at)
        end_at = changes.get("end_at", current.end_at)
        if start_at and end_at and end_at <= start_at:
            raise InvalidInput("end_at must be after start_at")
        if "goal_amount" in changes:
            changes = {**changes, "goal_amount": quantize_major(changes["goal_amount"], current.currency)}

        campaign = self.data_access.update_campaign_details(campaign_id, changes)
        logger.info(f"Campaign {campaign_id} updated: {sorted(changes)}")
        return campaign

    def set_status(self, campaign_id: str, status: CampaignStatus) -> Campaign:
        campaign = self.data_access.update_campaign_status(campaign_id, status)
        logger.info(f"Campaign {campaign_id} is now {status}")
        return campaign

    def recompute_aggregates(self, campaign_id: str) -> Campaign:
        return self.aggregator.recompute(campaign_id)
