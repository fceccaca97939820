import logging
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError
from decimal import Decimal

from donation_ledger.core.exceptions import (
    CampaignAlreadyExists,
    CampaignNotFound,
    StorageUnavailable,
    TransientConflict,
)
from donation_ledger.models.campaign import Campaign, CampaignStatus, DonorEntry
from donation_ledger.models.donation import DonationDetail, PaymentRecord, utc_now

logger = logging.getLogger(__name__)

CAMPAIGN_PREFIX = "CAMPAIGN#"
CAMPAIGN_SK = "CAMPAIGN"
PAYMENT_PREFIX = "PAYMENT#"
PAYMENT_SK = "RECORD"
DONATION_PREFIX = "DONATION#"
RATE_LIMIT_PREFIX = "RATELIMIT#"
WINDOW_PREFIX = "WINDOW#"
PAYMENTS_SUFFIX = "#PAYMENTS"
CAMPAIGN_PAYMENTS_INDEX = "GSI1"

# Campaign attributes admins may edit; aggregates belong to the aggregator.
CAMPAIGN_DETAIL_FIELDS = {"title", "goal_amount", "start_at", "end_at"}

CONFLICT_ERROR_CODES = {
    "TransactionCanceledException",
    "TransactionConflictException",
    "ConditionalCheckFailedException",
}

# Per-item reasons inside a TransactionCanceledException that mean "someone else wrote first".
CONFLICT_CANCELLATION_REASONS = {"None", "ConditionalCheckFailed", "TransactionConflict"}


def _campaign_key(campaign_id: str) -> dict:
    return {"PK": f"{CAMPAIGN_PREFIX}{campaign_id}", "SK": CAMPAIGN_SK}


def _payment_key(payment_ref: str) -> dict:
    return {"PK": f"{PAYMENT_PREFIX}{payment_ref}", "SK": PAYMENT_SK}


def _donation_key(campaign_id: str, donation_id: str) -> dict:
    return {"PK": f"{CAMPAIGN_PREFIX}{campaign_id}", "SK": f"{DONATION_PREFIX}{donation_id}"}


def _donor_entries_to_item(entries: list[DonorEntry]) -> list[dict]:
    return [{"name": e.name, "amount": e.amount, "at": e.at} for e in entries]


def _campaign_from_item(item: dict) -> Campaign:
    return Campaign(
        campaign_id=item["campaign_id"],
        title=item.get("title", ""),
        goal_amount=item.get("goal_amount", Decimal("0")),
        currency=item.get("currency", ""),
        status=item.get("status", "draft"),
        start_at=item.get("start_at"),
        end_at=item.get("end_at"),
        total_donated=item.get("total_donated", Decimal("0")),
        donors_count=int(item.get("donors_count", 0)),
        last_donors=[
            DonorEntry(name=d["name"], amount=d["amount"], at=int(d["at"]))
            for d in item.get("last_donors", [])
        ],
        version=int(item.get("version", 0)),
        created_by=item.get("created_by"),
        created_at=item["created_at"],
        updated_at=item["updated_at"],
    )


def _payment_to_item(record: PaymentRecord) -> dict:
    return {
        **_payment_key(record.payment_ref),
        "GSI1PK": f"{CAMPAIGN_PREFIX}{record.campaign_id}{PAYMENTS_SUFFIX}",
        "GSI1SK": record.created_at.isoformat(),
        "payment_ref": record.payment_ref,
        "campaign_id": record.campaign_id,
        "provider": record.provider,
        "status": record.status,
        "amount": record.amount,
        "currency": record.currency,
        "donor": record.donor,
        "counted": record.counted,
        "refunded": record.refunded,
        "counted_amount": record.counted_amount,
        "counted_at": record.counted_at,
        "donation_id": record.donation_id,
        "version": record.version,
        "created_at": record.created_at.isoformat(),
        "updated_at": record.updated_at.isoformat(),
    }


def _payment_from_item(item: dict) -> PaymentRecord:
    counted_at = item.get("counted_at")
    return PaymentRecord(
        payment_ref=item["payment_ref"],
        campaign_id=item["campaign_id"],
        provider=item["provider"],
        status=item["status"],
        amount=item["amount"],
        currency=item["currency"],
        donor=item.get("donor"),
        counted=bool(item.get("counted", False)),
        refunded=bool(item.get("refunded", item.get("status") == "refunded")),
        counted_amount=item.get("counted_amount"),
        counted_at=int(counted_at) if counted_at is not None else None,
        donation_id=item.get("donation_id"),
        version=int(item.get("version", 0)),
        created_at=item["created_at"],
        updated_at=item["updated_at"],
    )


def _donation_to_item(donation: DonationDetail) -> dict:
    return {
        **_donation_key(donation.campaign_id, donation.donation_id),
        "donation_id": donation.donation_id,
        "campaign_id": donation.campaign_id,
        "donor_name": donation.donor_name,
        "amount": donation.amount,
        "currency": donation.currency,
        "status": donation.status,
        "method": donation.method,
        "payment_ref": donation.payment_ref,
        "message": donation.message,
        "created_at": donation.created_at.isoformat(),
        "confirmed_at": donation.confirmed_at.isoformat() if donation.confirmed_at else None,
    }


class DynamoDataAccess:
    def __init__(self, table):
        self.table = table
        self.client = table.meta.client

    # -- campaigns -------------------------------------------------------

    def create_campaign(self, campaign: Campaign) -> Campaign:
        item = {
            **_campaign_key(campaign.campaign_id),
            "campaign_id": campaign.campaign_id,
            "title": campaign.title,
            "goal_amount": campaign.goal_amount,
            "currency": campaign.currency,
            "status": campaign.status,
            "start_at": campaign.start_at.isoformat() if campaign.start_at else None,
            "end_at": campaign.end_at.isoformat() if campaign.end_at else None,
            "total_donated": campaign.total_donated,
            "donors_count": campaign.donors_count,
            "last_donors": _donor_entries_to_item(campaign.last_donors),
            "version": campaign.version,
            "created_by": campaign.created_by,
            "created_at": campaign.created_at.isoformat(),
            "updated_at": campaign.updated_at.isoformat(),
        }

        try:
            self.table.put_item(
                Item=item,
                ConditionExpression="attribute_not_exists(PK)"
            )
            return campaign
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise CampaignAlreadyExists(campaign.campaign_id) from e
            logger.error(f"Error creating campaign {campaign.campaign_id}: {e}")
            raise StorageUnavailable("Could not create campaign") from e

    def get_campaign(self, campaign_id: str) -> Campaign | None:
        try:
            response = self.table.get_item(Key=_campaign_key(campaign_id), ConsistentRead=True)
        except ClientError as e:
            logger.error(f"Error reading campaign {campaign_id}: {e}")
            raise StorageUnavailable("Could not read campaign") from e
        item = response.get("Item")
        return _campaign_from_item(item) if item else None

    def update_campaign_status(self, campaign_id: str, status: CampaignStatus) -> Campaign:
        try:
            response = self.table.update_item(
                Key=_campaign_key(campaign_id),
                UpdateExpression="SET #status = :s, #updated = :now",
                ConditionExpression="attribute_exists(PK)",
                ExpressionAttributeNames={
                    "#status": "status",
                    "#updated": "updated_at"
                },
                ExpressionAttributeValues={
                    ":s": status,
                    ":now": utc_now().isoformat()
                },
                ReturnValues="ALL_NEW"
            )
            return _campaign_from_item(response["Attributes"])
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise CampaignNotFound(campaign_id) from e
            logger.error(f"Error updating campaign status: {e}")
            raise StorageUnavailable("Could not update campaign") from e

    def update_campaign_details(self, campaign_id: str, changes: dict) -> Campaign:
        """
        Sets descriptive fields (title, goal, dates). Aggregate fields and the
        version are left alone, so this never races with aggregation.
        """
        names = {"#updated": "updated_at"}
        values = {":now": utc_now().isoformat()}
        assignments = ["#updated = :now"]
        for i, (field, value) in enumerate(changes.items()):
            if field not in CAMPAIGN_DETAIL_FIELDS:
                raise ValueError(f"{field} is not an editable campaign field")
            if hasattr(value, "isoformat"):
                value = value.isoformat()
            names[f"#f{i}"] = field
            values[f":v{i}"] = value
            assignments.append(f"#f{i} = :v{i}")

        try:
            response = self.table.update_item(
                Key=_campaign_key(campaign_id),
                UpdateExpression="SET " + ", ".join(assignments),
                ConditionExpression="attribute_exists(PK)",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW"
            )
            return _campaign_from_item(response["Attributes"])
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise CampaignNotFound(campaign_id) from e
            logger.error(f"Error updating campaign {campaign_id}: {e}")
            raise StorageUnavailable("Could not update campaign") from e

    def replace_aggregates(self, campaign: Campaign, expected_version: int) -> None:
        """Overwrite the aggregate fields, guarded by the campaign version."""
        try:
            self.table.update_item(
                Key=_campaign_key(campaign.campaign_id),
                UpdateExpression=(
                    "SET #total = :total, #count = :count, #last = :last, "
                    "#version = :next, #updated = :now"
                ),
                ConditionExpression=self._version_condition(expected_version),
                ExpressionAttributeNames={
                    "#total": "total_donated",
                    "#count": "donors_count",
                    "#last": "last_donors",
                    "#version": "version",
                    "#updated": "updated_at"
                },
                ExpressionAttributeValues={
                    ":total": campaign.total_donated,
                    ":count": campaign.donors_count,
                    ":last": _donor_entries_to_item(campaign.last_donors),
                    ":next": expected_version + 1,
                    ":expected": expected_version,
                    ":now": utc_now().isoformat()
                }
            )
        except ClientError as e:
            self._raise_translated(e, f"recompute of campaign {campaign.campaign_id}")

    # -- payment records -------------------------------------------------

    def get_payment_record(self, payment_ref: str) -> PaymentRecord | None:
        try:
            response = self.table.get_item(Key=_payment_key(payment_ref), ConsistentRead=True)
        except ClientError as e:
            logger.error(f"Error reading payment record {payment_ref}: {e}")
            raise StorageUnavailable("Could not read payment record") from e
        item = response.get("Item")
        return _payment_from_item(item) if item else None

    def list_payment_records(self, campaign_id: str) -> list[PaymentRecord]:
        records = []
        query_args = {
            "IndexName": CAMPAIGN_PAYMENTS_INDEX,
            "KeyConditionExpression": Key("GSI1PK").eq(f"{CAMPAIGN_PREFIX}{campaign_id}{PAYMENTS_SUFFIX}"),
        }
        try:
            while True:
                response = self.table.query(**query_args)
                records.extend(_payment_from_item(item) for item in response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                query_args["ExclusiveStartKey"] = last_key
        except ClientError as e:
            logger.error(f"Error listing payment records for {campaign_id}: {e}")
            raise StorageUnavailable("Could not list payment records") from e
        return records

    # -- aggregation transaction -----------------------------------------

    def commit_aggregation(
        self,
        payment: PaymentRecord,
        expected_payment_version: int | None,
        campaign: Campaign | None = None,
        expected_campaign_version: int | None = None,
        new_donation: DonationDetail | None = None,
        refunded_donation_id: str | None = None,
    ) -> None:
        """
        Writes the payment record, and optionally the campaign aggregates and
        the donation detail, in one DynamoDB transaction.

        expected_payment_version=None means the payment record must not exist yet.
        Raises TransientConflict when any guarded item changed since it was read.
        """
        payment_item = _payment_to_item(payment)
        if expected_payment_version is None:
            payment_put = {
                "TableName": self.table.name,
                "Item": payment_item,
                "ConditionExpression": "attribute_not_exists(PK)",
            }
        else:
            payment_put = {
                "TableName": self.table.name,
                "Item": payment_item,
                "ConditionExpression": "#version = :expected",
                "ExpressionAttributeNames": {"#version": "version"},
                "ExpressionAttributeValues": {":expected": expected_payment_version},
            }
        items = [{"Put": payment_put}]

        if campaign is not None:
            items.append({
                "Update": {
                    "TableName": self.table.name,
                    "Key": _campaign_key(campaign.campaign_id),
                    "UpdateExpression": (
                        "SET #total = :total, #count = :count, #last = :last, "
                        "#version = :next, #updated = :now"
                    ),
                    "ConditionExpression": self._version_condition(expected_campaign_version),
                    "ExpressionAttributeNames": {
                        "#total": "total_donated",
                        "#count": "donors_count",
                        "#last": "last_donors",
                        "#version": "version",
                        "#updated": "updated_at",
                    },
                    "ExpressionAttributeValues": {
                        ":total": campaign.total_donated,
                        ":count": campaign.donors_count,
                        ":last": _donor_entries_to_item(campaign.last_donors),
                        ":next": expected_campaign_version + 1,
                        ":expected": expected_campaign_version,
                        ":now": utc_now().isoformat(),
                    },
                }
            })

        if new_donation is not None:
            items.append({
                "Put": {
                    "TableName": self.table.name,
                    "Item": _donation_to_item(new_donation),
                    "ConditionExpression": "attribute_not_exists(PK)",
                }
            })

        if refunded_donation_id is not None:
            items.append({
                "Update": {
                    "TableName": self.table.name,
                    "Key": _donation_key(payment.campaign_id, refunded_donation_id),
                    "UpdateExpression": "SET #status = :s",
                    "ExpressionAttributeNames": {"#status": "status"},
                    "ExpressionAttributeValues": {":s": "refunded"},
                }
            })

        try:
            self.client.transact_write_items(TransactItems=items)
        except ClientError as e:
            self._raise_translated(e, f"aggregation of payment {payment.payment_ref}")

    # -- rate limiting ---------------------------------------------------

    def increment_counter(self, key: str, window_start: int, expires_at: int) -> int:
        try:
            response = self.table.update_item(
                Key={"PK": f"{RATE_LIMIT_PREFIX}{key}", "SK": f"{WINDOW_PREFIX}{window_start}"},
                UpdateExpression="ADD #count :one SET #expires = if_not_exists(#expires, :expires)",
                ExpressionAttributeNames={
                    "#count": "request_count",
                    "#expires": "expires_at"
                },
                ExpressionAttributeValues={
                    ":one": 1,
                    ":expires": expires_at
                },
                ReturnValues="UPDATED_NEW"
            )
            return int(response["Attributes"]["request_count"])
        except ClientError as e:
            logger.error(f"Error incrementing rate limit counter {key}: {e}")
            raise StorageUnavailable("Could not update rate limit counter") from e

    # -- helpers ---------------------------------------------------------

    @staticmethod
    def _version_condition(expected_version: int) -> str:
        # Campaigns written before versioning was introduced carry no version attribute.
        if expected_version == 0:
            return "attribute_exists(PK) AND (attribute_not_exists(#version) OR #version = :expected)"
        return "attribute_exists(PK) AND #version = :expected"

    @staticmethod
    def _raise_translated(error: ClientError, action: str):
        code = error.response["Error"]["Code"]
        reasons = {r.get("Code", "None") for r in error.response.get("CancellationReasons") or []}
        if code in CONFLICT_ERROR_CODES and reasons <= CONFLICT_CANCELLATION_REASONS:
            logger.info(f"Write conflict during {action}: {code}")
            raise TransientConflict(f"Concurrent update during {action}") from error
        logger.error(f"Storage error during {action}: {error}")
        raise StorageUnavailable(f"Storage error during {action}") from error
