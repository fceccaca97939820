import boto3
import stripe
from functools import lru_cache

from donation_ledger.core.config import get_settings
from donation_ledger.core.rate_limit import DynamoRateLimitStore, InMemoryRateLimitStore, RateLimiter
from donation_ledger.data_access.dynamodb import DynamoDataAccess
from donation_ledger.services.aggregator import DonationAggregator
from donation_ledger.services.campaign_service import CampaignService
from donation_ledger.services.donation_service import DonationService
from donation_ledger.services.paypal_client import PayPalClient


@lru_cache()
def get_boto_session() -> boto3.Session:
    settings = get_settings()
    return boto3.Session(
        region_name=settings.AWS_REGION,
        profile_name=settings.AWS_PROFILE
    )

@lru_cache()
def get_data_access() -> DynamoDataAccess:
    settings = get_settings()
    session = get_boto_session()
    dynamo_resource = session.resource('dynamodb', endpoint_url=settings.DYNAMODB_ENDPOINT_URL)
    table = dynamo_resource.Table(settings.DYNAMODB_TABLE_NAME)
    return DynamoDataAccess(table=table)

@lru_cache()
def get_aggregator() -> DonationAggregator:
    settings = get_settings()
    return DonationAggregator(
        data_access=get_data_access(),
        last_donors_window=settings.LAST_DONORS_WINDOW,
        max_attempts=settings.AGGREGATE_MAX_ATTEMPTS,
        retry_wait_seconds=settings.AGGREGATE_RETRY_WAIT_SECONDS
    )

@lru_cache()
def get_paypal_client() -> PayPalClient:
    settings = get_settings()
    return PayPalClient(
        client_id=settings.PAYPAL_CLIENT_ID,
        client_secret=settings.PAYPAL_CLIENT_SECRET,
        mode=settings.PAYPAL_MODE
    )

@lru_cache()
def get_donation_service() -> DonationService:
    settings = get_settings()
    stripe.api_key = settings.STRIPE_SECRET_KEY

    return DonationService(
        aggregator=get_aggregator(),
        data_access=get_data_access(),
        paypal_client=get_paypal_client(),
        stripe_webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        min_donation=settings.MIN_DONATION,
        max_donation=settings.MAX_DONATION
    )

@lru_cache()
def get_campaign_service() -> CampaignService:
    settings = get_settings()
    return CampaignService(
        data_access=get_data_access(),
        aggregator=get_aggregator(),
        default_currency=settings.DEFAULT_CURRENCY
    )

@lru_cache()
def get_rate_limiter() -> RateLimiter:
    settings = get_settings()
    if settings.RATE_LIMIT_BACKEND == "dynamodb":
        store = DynamoRateLimitStore(get_data_access())
    else:
        store = InMemoryRateLimitStore()
    return RateLimiter(
        store=store,
        limit=settings.RATE_LIMIT_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS
    )
