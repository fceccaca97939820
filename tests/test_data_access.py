from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from donation_ledger.core.exceptions import (
    CampaignAlreadyExists,
    CampaignNotFound,
    StorageUnavailable,
    TransientConflict,
)
from donation_ledger.data_access.dynamodb import DynamoDataAccess
from donation_ledger.models.campaign import Campaign, DonorEntry
from donation_ledger.models.donation import PaymentRecord


def test_create_campaign_rejects_duplicates(data_access, campaign):
    with pytest.raises(CampaignAlreadyExists):
        data_access.create_campaign(Campaign(
            campaign_id="c1", title="Again", goal_amount=Decimal("1"), currency="GBP",
        ))


def test_campaign_round_trip(data_access, campaign):
    stored = data_access.get_campaign("c1")

    assert stored.title == "Winter appeal"
    assert stored.goal_amount == Decimal("1000.00")
    assert stored.total_donated == Decimal("0")
    assert stored.last_donors == []
    assert stored.version == 0
    assert data_access.get_campaign("missing") is None


def test_update_status(data_access, campaign):
    updated = data_access.update_campaign_status("c1", "paused")

    assert updated.status == "paused"
    assert data_access.get_campaign("c1").status == "paused"


def test_update_status_of_missing_campaign(data_access, table):
    with pytest.raises(CampaignNotFound):
        data_access.update_campaign_status("missing", "active")
    assert table.scan()["Count"] == 0


def test_replace_aggregates_is_version_guarded(data_access, campaign):
    stored = data_access.get_campaign("c1")
    stored.total_donated = Decimal("7")

    data_access.replace_aggregates(stored, expected_version=0)
    with pytest.raises(TransientConflict):
        data_access.replace_aggregates(stored, expected_version=0)

    refreshed = data_access.get_campaign("c1")
    assert refreshed.total_donated == Decimal("7")
    assert refreshed.version == 1


def test_list_payment_records_is_scoped_to_campaign(aggregator, data_access, campaign):
    data_access.create_campaign(Campaign(
        campaign_id="c2", title="Other", goal_amount=Decimal("10"), currency="GBP", status="active",
    ))
    aggregator.record_donation("c1", "pi_1", "stripe", "succeeded", Decimal("5"), "GBP")
    aggregator.record_donation("c1", "pi_2", "stripe", "failed", Decimal("5"), "GBP")
    aggregator.record_donation("c2", "pi_3", "stripe", "succeeded", Decimal("5"), "GBP")

    refs = sorted(r.payment_ref for r in data_access.list_payment_records("c1"))

    assert refs == ["pi_1", "pi_2"]


def test_increment_counter_counts_per_window(data_access, table):
    assert data_access.increment_counter("ip:1.2.3.4", 60, 180) == 1
    assert data_access.increment_counter("ip:1.2.3.4", 60, 180) == 2
    assert data_access.increment_counter("ip:1.2.3.4", 120, 240) == 1

    item = table.get_item(Key={"PK": "RATELIMIT#ip:1.2.3.4", "SK": "WINDOW#60"})["Item"]
    assert item["expires_at"] == 180


def test_commit_aggregation_writes_plain_items(data_access, table, campaign):
    record = PaymentRecord(
        payment_ref="pi_1", campaign_id="c1", provider="stripe", status="succeeded",
        amount=Decimal("25.00"), currency="GBP", counted=True, counted_amount=Decimal("25.00"),
        counted_at=1, version=1,
    )
    stored = data_access.get_campaign("c1")
    stored.total_donated = Decimal("25.00")
    stored.donors_count = 1
    stored.last_donors = [DonorEntry(name="A", amount=Decimal("25.00"), at=1)]

    data_access.commit_aggregation(record, None, campaign=stored, expected_campaign_version=0)

    item = table.get_item(Key={"PK": "PAYMENT#pi_1", "SK": "RECORD"})["Item"]
    assert item["PK"] == "PAYMENT#pi_1"
    assert item["amount"] == Decimal("25.00")
    refreshed = data_access.get_campaign("c1")
    assert refreshed.total_donated == Decimal("25.00")
    assert refreshed.last_donors[0].name == "A"
    assert refreshed.version == 1


def test_cancelled_transaction_for_invalid_item_is_not_a_conflict():
    table = MagicMock()
    table.meta.client.transact_write_items.side_effect = ClientError(
        {
            "Error": {"Code": "TransactionCanceledException", "Message": "cancelled"},
            "CancellationReasons": [{"Code": "ValidationError"}, {"Code": "None"}],
        },
        "TransactWriteItems",
    )
    record = PaymentRecord(
        payment_ref="pi_1", campaign_id="c1", provider="stripe", status="created",
        amount=Decimal("1"), currency="GBP",
    )

    with pytest.raises(StorageUnavailable):
        DynamoDataAccess(table).commit_aggregation(record, None)


def test_cancelled_transaction_for_changed_item_is_a_conflict():
    table = MagicMock()
    table.meta.client.transact_write_items.side_effect = ClientError(
        {
            "Error": {"Code": "TransactionCanceledException", "Message": "cancelled"},
            "CancellationReasons": [{"Code": "ConditionalCheckFailed"}, {"Code": "None"}],
        },
        "TransactWriteItems",
    )
    record = PaymentRecord(
        payment_ref="pi_1", campaign_id="c1", provider="stripe", status="created",
        amount=Decimal("1"), currency="GBP",
    )

    with pytest.raises(TransientConflict):
        DynamoDataAccess(table).commit_aggregation(record, None)


def test_update_campaign_details_leaves_aggregates_alone(aggregator, data_access, campaign):
    aggregator.record_donation("c1", "pi_1", "stripe", "succeeded", Decimal("25"), "GBP")

    updated = data_access.update_campaign_details("c1", {"title": "Renamed", "goal_amount": Decimal("2000.00")})

    assert updated.title == "Renamed"
    assert updated.goal_amount == Decimal("2000.00")
    assert updated.total_donated == Decimal("25")
    assert updated.donors_count == 1
    assert updated.version == 1

    with pytest.raises(ValueError):
        data_access.update_campaign_details("c1", {"total_donated": Decimal("0")})
    with pytest.raises(CampaignNotFound):
        data_access.update_campaign_details("missing", {"title": "x"})
