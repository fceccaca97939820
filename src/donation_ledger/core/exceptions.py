class DonationLedgerError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(DonationLedgerError):
    status_code = 400


class CampaignNotFound(DonationLedgerError):
    status_code = 404

    def __init__(self, campaign_id: str):
        super().__init__(f"Donation campaign not found for id \"{campaign_id}\"")
        self.campaign_id = campaign_id


class CampaignAlreadyExists(DonationLedgerError):
    status_code = 409

    def __init__(self, campaign_id: str):
        super().__init__(f"Donation campaign \"{campaign_id}\" already exists")
        self.campaign_id = campaign_id


class CampaignNotAcceptingDonations(DonationLedgerError):
    status_code = 409


class TransientConflict(DonationLedgerError):
    """A concurrent writer changed the records between our reads and writes."""
    status_code = 503


class StorageUnavailable(DonationLedgerError):
    status_code = 503


class PaymentProviderError(DonationLedgerError):
    status_code = 502

    def __init__(self, message: str, provider_status: int | None = None):
        super().__init__(message)
        self.provider_status = provider_status
