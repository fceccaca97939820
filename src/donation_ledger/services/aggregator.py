"""
Idempotent donation aggregation.

Every event source (Stripe webhook, client confirmation, admin entry) funnels
into DonationAggregator.record_donation. The payment reference is the
idempotency key: the payment record remembers whether its amount is already
folded into the campaign totals (``counted``), and the record and the campaign
aggregate are written in a single DynamoDB transaction guarded by version
conditions. A concurrent writer makes the transaction fail, and the whole
read-decide-write cycle is retried.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from pydantic import ValidationError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from donation_ledger.core.exceptions import CampaignNotFound, InvalidInput, TransientConflict
from donation_ledger.data_access.dynamodb import DynamoDataAccess
from donation_ledger.models.campaign import Campaign, DonorEntry
from donation_ledger.models.donation import (
    DonationDetail,
    DonationEvent,
    PaymentRecord,
    now_millis,
    utc_now,
)

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    COUNTED = "counted"
    DUPLICATE = "duplicate"
    REVERSED = "reversed"
    RECORDED = "recorded"
    IGNORED = "ignored"


@dataclass(frozen=True)
class AggregationResult:
    outcome: Outcome
    payment_ref: str
    campaign_id: str
    total_donated: Decimal
    donors_count: int
    donation_id: str | None = None


class DonationAggregator:
    def __init__(
        self,
        data_access: DynamoDataAccess,
        last_donors_window: int = 15,
        max_attempts: int = 5,
        retry_wait_seconds: float = 0.05,
    ):
        self.data_access = data_access
        self.last_donors_window = last_donors_window
        self.max_attempts = max_attempts
        self.retry_wait_seconds = retry_wait_seconds

    def _retrying(self) -> Retrying:
        return Retrying(
            wait=wait_exponential(multiplier=self.retry_wait_seconds, max=self.retry_wait_seconds * 8),
            stop=stop_after_attempt(self.max_attempts),
            retry=retry_if_exception_type(TransientConflict),
            reraise=True,
        )

    def record_donation(
        self,
        campaign_id: str,
        payment_ref: str,
        provider: str,
        status: str,
        amount,
        currency: str,
        donor=None,
        message: str | None = None,
    ) -> AggregationResult:
        try:
            event = DonationEvent(
                campaign_id=campaign_id,
                payment_ref=payment_ref,
                provider=provider,
                status=status,
                amount=amount,
                currency=currency,
                donor=donor,
                message=message,
            )
        except ValidationError as e:
            raise InvalidInput(f"Invalid donation event: {e.errors()[0]['msg']}") from e

        campaign = self.data_access.get_campaign(event.campaign_id)
        if campaign is None:
            raise CampaignNotFound(event.campaign_id)
        if campaign.currency and campaign.currency != event.currency:
            raise InvalidInput(
                f"Currency {event.currency} does not match campaign currency {campaign.currency}"
            )

        for attempt in self._retrying():
            with attempt:
                result = self._apply(event)

        logger.info(
            f"Payment {event.payment_ref} for campaign {event.campaign_id}: {result.outcome.value} "
            f"(total={result.total_donated}, donors={result.donors_count})",
            extra={
                "campaign_id": event.campaign_id,
                "payment_ref": event.payment_ref,
                "provider": event.provider,
                "outcome": result.outcome.value,
            }
        )
        return result

    def _apply(self, event: DonationEvent) -> AggregationResult:
        # Reads first: payment record, then the campaign aggregate.
        existing = self.data_access.get_payment_record(event.payment_ref)
        campaign = self.data_access.get_campaign(event.campaign_id)
        if campaign is None:
            raise CampaignNotFound(event.campaign_id)
        if existing is not None and existing.campaign_id != event.campaign_id:
            raise InvalidInput(
                f"Payment {event.payment_ref} is already recorded for campaign {existing.campaign_id}"
            )

        expected_payment_version = existing.version if existing else None

        if existing is not None and existing.counted:
            if event.is_success:
                return self._backfill_duplicate(event, existing, campaign)
            if event.is_reversal:
                return self._reverse(event, existing, campaign)
            logger.warning(
                f"Ignoring status '{event.status}' for already counted payment {event.payment_ref}"
            )
            return self._result(Outcome.IGNORED, event, campaign, existing.donation_id)

        if existing is not None and existing.refunded:
            # A refunded payment stays out of the totals whatever arrives later.
            logger.info(
                f"Ignoring status '{event.status}' for refunded payment {event.payment_ref}"
            )
            return self._result(Outcome.IGNORED, event, campaign, existing.donation_id)

        record = self._merge_record(event, existing)

        if not event.is_success:
            record.refunded = event.is_reversal
            self.data_access.commit_aggregation(record, expected_payment_version)
            return self._result(Outcome.RECORDED, event, campaign, record.donation_id)

        now = utc_now()
        at = now_millis()
        donor_name = record.donor_name
        donation = DonationDetail(
            campaign_id=event.campaign_id,
            donor_name=donor_name,
            amount=event.amount,
            currency=event.currency,
            method=event.provider,
            payment_ref=event.payment_ref,
            message=event.message,
            created_at=now,
            confirmed_at=now,
        )
        record.counted = True
        record.counted_amount = event.amount
        record.counted_at = at
        record.donation_id = donation.donation_id

        expected_campaign_version = campaign.version
        entry = DonorEntry(name=donor_name, amount=event.amount, at=at)
        campaign.total_donated = campaign.total_donated + event.amount
        campaign.donors_count = campaign.donors_count + 1
        campaign.last_donors = [entry, *campaign.last_donors][: self.last_donors_window]

        self.data_access.commit_aggregation(
            record,
            expected_payment_version,
            campaign=campaign,
            expected_campaign_version=expected_campaign_version,
            new_donation=donation,
        )
        return self._result(Outcome.COUNTED, event, campaign, donation.donation_id)

    def _backfill_duplicate(
        self, event: DonationEvent, existing: PaymentRecord, campaign: Campaign
    ) -> AggregationResult:
        if existing.donation_id:
            return self._result(Outcome.DUPLICATE, event, campaign, existing.donation_id)

        # Counted without a donation detail: attach one, totals stay untouched.
        donation = DonationDetail(
            campaign_id=existing.campaign_id,
            donor_name=existing.donor_name,
            amount=existing.counted_amount or existing.amount,
            currency=existing.currency,
            method=existing.provider,
            payment_ref=existing.payment_ref,
            message=event.message,
            confirmed_at=utc_now(),
        )
        record = existing.model_copy(update={
            "donation_id": donation.donation_id,
            "version": existing.version + 1,
            "updated_at": utc_now(),
        })
        self.data_access.commit_aggregation(record, existing.version, new_donation=donation)
        return self._result(Outcome.DUPLICATE, event, campaign, donation.donation_id)

    def _reverse(
        self, event: DonationEvent, existing: PaymentRecord, campaign: Campaign
    ) -> AggregationResult:
        counted_amount = existing.counted_amount if existing.counted_amount is not None else existing.amount
        expected_campaign_version = campaign.version

        campaign.total_donated = max(Decimal("0"), campaign.total_donated - counted_amount)
        campaign.donors_count = max(0, campaign.donors_count - 1)
        campaign.last_donors = [
            d for d in campaign.last_donors
            if not (
                d.at == existing.counted_at
                and d.amount == counted_amount
                and d.name == existing.donor_name
            )
        ]

        record = existing.model_copy(update={
            "status": event.status,
            "counted": False,
            "refunded": True,
            "counted_amount": None,
            "counted_at": None,
            "version": existing.version + 1,
            "updated_at": utc_now(),
        })
        self.data_access.commit_aggregation(
            record,
            existing.version,
            campaign=campaign,
            expected_campaign_version=expected_campaign_version,
            refunded_donation_id=existing.donation_id,
        )
        return self._result(Outcome.REVERSED, event, campaign, existing.donation_id)

    def recompute(self, campaign_id: str) -> Campaign:
        """Rebuild a campaign's aggregates from its counted payment records."""
        for attempt in self._retrying():
            with attempt:
                campaign = self.data_access.get_campaign(campaign_id)
                if campaign is None:
                    raise CampaignNotFound(campaign_id)

                counted = [r for r in self.data_access.list_payment_records(campaign_id) if r.counted]
                expected_version = campaign.version
                campaign.total_donated = sum(
                    (r.counted_amount if r.counted_amount is not None else r.amount for r in counted),
                    Decimal("0"),
                )
                campaign.donors_count = len(counted)
                newest_first = sorted(counted, key=lambda r: (r.counted_at or 0, r.created_at), reverse=True)
                campaign.last_donors = [
                    DonorEntry(
                        name=r.donor_name,
                        amount=r.counted_amount if r.counted_amount is not None else r.amount,
                        at=r.counted_at or 0,
                    )
                    for r in newest_first[: self.last_donors_window]
                ]
                self.data_access.replace_aggregates(campaign, expected_version)
                campaign.version = expected_version + 1

        logger.info(
            f"Recomputed campaign {campaign_id}: total={campaign.total_donated}, "
            f"donors={campaign.donors_count}"
        )
        return campaign

    @staticmethod
    def _merge_record(event: DonationEvent, existing: PaymentRecord | None) -> PaymentRecord:
        now = utc_now()
        if existing is None:
            return PaymentRecord(
                payment_ref=event.payment_ref,
                campaign_id=event.campaign_id,
                provider=event.provider,
                status=event.status,
                amount=event.amount,
                currency=event.currency,
                donor=event.donor.to_item() if event.donor else None,
                version=1,
                created_at=now,
                updated_at=now,
            )
        return existing.model_copy(update={
            "status": event.status,
            "amount": event.amount,
            "currency": event.currency,
            "donor": event.donor.to_item() if event.donor else existing.donor,
            "version": existing.version + 1,
            "updated_at": now,
        })

    @staticmethod
    def _result(
        outcome: Outcome, event: DonationEvent, campaign: Campaign, donation_id: str | None
    ) -> AggregationResult:
        return AggregationResult(
            outcome=outcome,
            payment_ref=event.payment_ref,
            campaign_id=event.campaign_id,
            total_donated=campaign.total_donated,
            donors_count=campaign.donors_count,
            donation_id=donation_id,
        )
