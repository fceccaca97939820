import hashlib
import hmac
import os
import time

os.environ.setdefault("AWS_REGION", "eu-west-2")
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-2")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("DYNAMODB_TABLE_NAME", "donation-ledger-test")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

import boto3
import pytest
from decimal import Decimal
from moto import mock_aws

from donation_ledger.data_access.dynamodb import DynamoDataAccess
from donation_ledger.models.campaign import Campaign
from donation_ledger.services.aggregator import DonationAggregator

TABLE_NAME = os.environ["DYNAMODB_TABLE_NAME"]
WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Builds a Stripe-Signature header the way Stripe signs webhook deliveries."""
    timestamp = timestamp or int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def intent_event(event_type="payment_intent.succeeded", pi_id="pi_1", amount=2500, metadata=None):
    return {
        "id": "evt_1",
        "type": event_type,
        "data": {
            "object": {
                "id": pi_id,
                "object": "payment_intent",
                "amount": amount,
                "amount_received": amount if event_type == "payment_intent.succeeded" else 0,
                "currency": "gbp",
                "status": "succeeded",
                "metadata": {"campaignId": "c1", "donorFirstName": "A"} if metadata is None else metadata,
            }
        },
    }


@pytest.fixture
def table():
    with mock_aws():
        resource = boto3.resource("dynamodb", region_name="eu-west-2")
        table = resource.create_table(
            TableName=TABLE_NAME,
            KeySchema=[
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "PK", "AttributeType": "S"},
                {"AttributeName": "SK", "AttributeType": "S"},
                {"AttributeName": "GSI1PK", "AttributeType": "S"},
                {"AttributeName": "GSI1SK", "AttributeType": "S"},
            ],
            GlobalSecondaryIndexes=[
                {
                    "IndexName": "GSI1",
                    "KeySchema": [
                        {"AttributeName": "GSI1PK", "KeyType": "HASH"},
                        {"AttributeName": "GSI1SK", "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                }
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        yield table


@pytest.fixture
def data_access(table):
    return DynamoDataAccess(table)


@pytest.fixture
def aggregator(data_access):
    return DonationAggregator(data_access, last_donors_window=15, max_attempts=5, retry_wait_seconds=0)


@pytest.fixture
def campaign(data_access):
    campaign = Campaign(
        campaign_id="c1",
        title="Winter appeal",
        goal_amount=Decimal("1000.00"),
        currency="GBP",
        status="active",
    )
    return data_access.create_campaign(campaign)
