from typing import Optional

import httpx


class MedfundError(Exception):
    """Base class for every error raised by the campaign store."""


class StoreUnavailable(MedfundError):
    def __init__(self, detail: str = "Pinata service not configured. Missing JWT token."):
        super().__init__(detail)


class StoreError(MedfundError):
    """An HTTP exchange with the pinning service or gateway went wrong."""

    def __init__(self, status_code: Optional[int], detail: str):
        prefix = f"{status_code} → " if status_code is not None else ""
        super().__init__(f"{prefix}{detail}")
        self.status_code = status_code
        self.detail = detail

    @classmethod
    def from_response(cls, resp: httpx.Response):
        try:
            data = resp.json()
            detail = data.get("error") or data.get("message") or data
        except Exception:
            detail = resp.text or resp.reason_phrase
        return cls(resp.status_code, str(detail))


class UploadFailed(StoreError):
    pass


class FetchFailed(StoreError):
    pass


class UnpinFailed(StoreError):
    pass


class NotFound(FetchFailed):
    pass


class MalformedDocument(FetchFailed):
    def __init__(self, detail: str):
        super().__init__(None, detail)


class MissingCampaignId(MedfundError):
    def __init__(self):
        super().__init__("Campaign ID is required to upload.")


class NotLoaded(MedfundError):
    def __init__(self):
        super().__init__("Database not loaded or initialized.")


class Conflict(MedfundError):
    """The pointer file no longer names the database the caller started from."""

    def __init__(self, expected: Optional[str], actual: Optional[str]):
        super().__init__(f"Pointer moved: expected {expected!r}, found {actual!r}")
        self.expected = expected
        self.actual = actual


class CampaignNotFound(MedfundError):
    def __init__(self, campaign_id: str):
        super().__init__(f"Campaign with ID {campaign_id} not found")
        self.campaign_id = campaign_id


class FundingRegression(MedfundError):
    def __init__(self, field: str, current, proposed):
        super().__init__(f"{field} cannot decrease ({current} -> {proposed})")
        self.field = field
