import json
import uuid
import stripe
import logging
from decimal import Decimal

from donation_ledger.core.currency import quantize_major, to_major_units, to_minor_units
from donation_ledger.core.exceptions import (
    CampaignNotAcceptingDonations,
    CampaignNotFound,
    InvalidInput,
    PaymentProviderError,
)
from donation_ledger.data_access.dynamodb import DynamoDataAccess
from donation_ledger.models.campaign import Campaign
from donation_ledger.models.donation import Donor
from donation_ledger.services.aggregator import AggregationResult, DonationAggregator
from donation_ledger.services.paypal_client import PayPalClient

logger = logging.getLogger(__name__)

# Metadata keys older checkout code used for the campaign id.
CAMPAIGN_METADATA_KEYS = ("campaignId", "campaign_id", "donationCampaignId", "donation_campaign_id")

STRIPE_EVENT_STATUS = {
    "payment_intent.succeeded": "succeeded",
    "payment_intent.payment_failed": "failed",
    "payment_intent.processing": "processing",
    "payment_intent.canceled": "canceled",
}

STRIPE_INTENT_STATUS = {
    "succeeded": "succeeded",
    "processing": "processing",
    "requires_capture": "processing",
    "canceled": "canceled",
}

PAYPAL_CAPTURE_STATUS = {
    "COMPLETED": "succeeded",
    "PARTIALLY_REFUNDED": "succeeded",
    "PENDING": "pending",
    "DECLINED": "failed",
    "FAILED": "failed",
    "REFUNDED": "refunded",
}

MANUAL_REF_PREFIX = "manual_"
PAYPAL_REF_PREFIX = "pp_"


def _as_dict(obj) -> dict:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


def _campaign_id_from(metadata: dict) -> str | None:
    for key in CAMPAIGN_METADATA_KEYS:
        value = (metadata.get(key) or "").strip()
        if value:
            return value
    return None


def _donor_from(metadata: dict) -> Donor:
    return Donor(
        first_name=metadata.get("donorFirstName"),
        last_name=metadata.get("donorLastName"),
        is_anonymous=str(metadata.get("donorAnonymous", "")).lower() == "true",
    )


class DonationService:
    """Event sources feeding the aggregator: Stripe, PayPal and admin entry."""

    def __init__(
        self,
        aggregator: DonationAggregator,
        data_access: DynamoDataAccess,
        paypal_client: PayPalClient,
        stripe_webhook_secret: str,
        min_donation: Decimal = Decimal("1"),
        max_donation: Decimal = Decimal("10000"),
    ):
        self.aggregator = aggregator
        self.data_access = data_access
        self.paypal_client = paypal_client
        self.stripe_webhook_secret = stripe_webhook_secret
        self.min_donation = min_donation
        self.max_donation = max_donation

    # -- checkout starters -----------------------------------------------

    def _checkout_campaign(self, campaign_id: str, amount: Decimal, currency: str | None) -> tuple[Campaign, str]:
        campaign = self.data_access.get_campaign(campaign_id)
        if campaign is None:
            raise CampaignNotFound(campaign_id)
        if campaign.status != "active":
            raise CampaignNotAcceptingDonations(f"Campaign {campaign_id} is {campaign.status}")

        currency = (currency or campaign.currency).upper()
        if currency != campaign.currency:
            raise InvalidInput(f"Campaign {campaign_id} accepts {campaign.currency} only")
        if amount < self.min_donation or amount > self.max_donation:
            raise InvalidInput(
                f"Amount must be between {self.min_donation} and {self.max_donation} {currency}"
            )
        return campaign, currency

    def create_stripe_intent(
        self,
        campaign_id: str,
        amount: Decimal,
        currency: str | None = None,
        donor: Donor | None = None,
        email: str | None = None,
    ) -> dict:
        campaign, currency = self._checkout_campaign(campaign_id, amount, currency)
        donor = donor or Donor()
        minor = to_minor_units(amount, currency)

        try:
            intent = stripe.PaymentIntent.create(
                amount=minor,
                currency=currency.lower(),
                automatic_payment_methods={"enabled": True},
                receipt_email=email,
                metadata={
                    "type": "donation",
                    "campaignId": campaign.campaign_id,
                    "donorFirstName": donor.first_name or "",
                    "donorLastName": donor.last_name or "",
                    "donorAnonymous": "true" if donor.is_anonymous else "false",
                }
            )
        except stripe.StripeError as e:
            logger.error(f"Error creating Stripe intent: {e}")
            raise PaymentProviderError("Stripe payment intent creation failed") from e

        self.aggregator.record_donation(
            campaign_id=campaign.campaign_id,
            payment_ref=intent.id,
            provider="stripe",
            status="created",
            amount=to_major_units(minor, currency),
            currency=currency,
            donor=donor,
        )
        return {
            "client_secret": intent.client_secret,
            "payment_intent_id": intent.id,
            "amount": to_major_units(minor, currency),
            "currency": currency,
        }

    def create_paypal_order(
        self,
        campaign_id: str,
        amount: Decimal,
        currency: str | None = None,
        donor: Donor | None = None,
    ) -> dict:
        campaign, currency = self._checkout_campaign(campaign_id, amount, currency)
        amount = quantize_major(amount, currency)

        order = self.paypal_client.create_order(amount, currency, campaign.campaign_id)
        order_id = order["id"]
        approve_url = next(
            (link["href"] for link in order.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )

        self.aggregator.record_donation(
            campaign_id=campaign.campaign_id,
            payment_ref=f"{PAYPAL_REF_PREFIX}{order_id}",
            provider="paypal",
            status="created",
            amount=amount,
            currency=currency,
            donor=donor,
        )
        return {"order_id": order_id, "approve_url": approve_url, "amount": amount, "currency": currency}

    # -- webhook ---------------------------------------------------------

    def handle_stripe_webhook(self, payload: bytes, signature_header: str) -> AggregationResult | None:
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature_header,
                self.stripe_webhook_secret,
                tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
            event = json.loads(payload)
        except ValueError as e:
            logger.error(f"Webhook error: Invalid payload - {e}")
            raise
        except stripe.SignatureVerificationError as e:
            # Invalid signature
            logger.error(f"Webhook error: Invalid signature - {e}")
            raise

        return self.handle_stripe_event(event)

    def handle_stripe_event(self, event: dict) -> AggregationResult | None:
        event_type = event.get("type")
        obj = event.get("data", {}).get("object", {})

        if event_type in STRIPE_EVENT_STATUS:
            payment_ref = obj.get("id")
            status = STRIPE_EVENT_STATUS[event_type]
            minor = obj.get("amount_received") or obj.get("amount")
        elif event_type == "charge.succeeded":
            payment_ref = obj.get("payment_intent")
            status = "succeeded"
            minor = obj.get("amount")
        elif event_type == "charge.refunded":
            if not obj.get("refunded"):
                logger.info(f"Ignoring partial refund on charge {obj.get('id')}")
                return None
            payment_ref = obj.get("payment_intent")
            status = "refunded"
            minor = obj.get("amount")
        else:
            logger.info(f"Received unhandled event type: {event_type}", extra={"event_type": event_type})
            return None

        if not payment_ref:
            logger.info(f"Ignoring {event_type} without a payment intent reference")
            return None

        metadata = obj.get("metadata") or {}
        campaign_id = _campaign_id_from(metadata)
        if campaign_id is None:
            # Charges may lack the intent's metadata; fall back to what we recorded earlier.
            known = self.data_access.get_payment_record(payment_ref)
            campaign_id = known.campaign_id if known else None
        if campaign_id is None:
            logger.info(f"Ignoring {event_type} for {payment_ref}: no donation campaign attached")
            return None

        currency = (obj.get("currency") or "").upper()
        return self.aggregator.record_donation(
            campaign_id=campaign_id,
            payment_ref=payment_ref,
            provider="stripe",
            status=status,
            amount=to_major_units(minor, currency),
            currency=currency,
            donor=_donor_from(metadata),
        )

    # -- client confirmation ---------------------------------------------

    def confirm_stripe_payment(self, payment_intent_id: str, campaign_id: str | None = None) -> AggregationResult:
        try:
            intent = _as_dict(stripe.PaymentIntent.retrieve(payment_intent_id))
        except stripe.StripeError as e:
            logger.error(f"Error retrieving Stripe intent {payment_intent_id}: {e}")
            raise PaymentProviderError("Could not verify payment with Stripe") from e

        metadata = _as_dict(intent.get("metadata"))
        campaign_id = _campaign_id_from(metadata) or (campaign_id or "").strip()
        if not campaign_id:
            raise InvalidInput("campaignId missing in payment metadata and request")

        intent_status = intent.get("status")
        status = STRIPE_INTENT_STATUS.get(intent_status, "created")
        if intent_status == "requires_payment_method" and intent.get("last_payment_error"):
            status = "failed"

        currency = (intent.get("currency") or "").upper()
        minor = intent.get("amount_received") or intent.get("amount")
        return self.aggregator.record_donation(
            campaign_id=campaign_id,
            payment_ref=intent["id"],
            provider="stripe",
            status=status,
            amount=to_major_units(minor, currency),
            currency=currency,
            donor=_donor_from(metadata),
        )

    def confirm_paypal_order(
        self,
        order_id: str,
        campaign_id: str | None = None,
        donor: Donor | None = None,
    ) -> AggregationResult:
        order = self.paypal_client.capture_order(order_id)

        units = order.get("purchase_units") or [{}]
        unit = units[0]
        captures = (unit.get("payments") or {}).get("captures") or []
        capture = captures[0] if captures else None
        if capture:
            status = PAYPAL_CAPTURE_STATUS.get(capture.get("status"), "created")
            amount_info = capture.get("amount") or {}
        else:
            status = "created"
            amount_info = unit.get("amount") or {}

        campaign_id = (unit.get("custom_id") or campaign_id or "").strip()
        if not campaign_id:
            raise InvalidInput("campaignId missing in PayPal order and request")

        if donor is None:
            payer_name = (order.get("payer") or {}).get("name") or {}
            donor = Donor(first_name=payer_name.get("given_name"), last_name=payer_name.get("surname"))

        return self.aggregator.record_donation(
            campaign_id=campaign_id,
            payment_ref=f"{PAYPAL_REF_PREFIX}{order_id}",
            provider="paypal",
            status=status,
            amount=Decimal(str(amount_info.get("value", "0"))),
            currency=amount_info.get("currency_code", ""),
            donor=donor,
        )

    # -- admin entry -----------------------------------------------------

    def record_manual_donation(
        self,
        campaign_id: str,
        amount: Decimal,
        currency: str,
        donor: Donor | None = None,
        message: str | None = None,
        payment_ref: str | None = None,
        status: str = "confirmed",
    ) -> AggregationResult:
        payment_ref = (payment_ref or "").strip() or f"{MANUAL_REF_PREFIX}{uuid.uuid4().hex}"
        return self.aggregator.record_donation(
            campaign_id=campaign_id,
            payment_ref=payment_ref,
            provider="manual",
            status=status,
            amount=amount,
            currency=currency,
            donor=donor,
            message=message,
        )
