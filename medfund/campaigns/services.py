import asyncio
import re
import time
from typing import Any, Callable, List, Optional

from medfund.campaigns.schemas import (
    Campaign,
    CampaignUpload,
    ImageUpload,
    Reward,
    RootDocument,
    Testimonial,
)
from medfund.core.enums.campaign import CampaignStatus
from medfund.core.exceptions import (
    CampaignNotFound,
    FundingRegression,
    MissingCampaignId,
    NotLoaded,
    StoreUnavailable,
)
from medfund.core.logger import logger
from medfund.storage.pinata import PinataClient


def now_ms() -> int:
    return int(time.time() * 1000)


def _slug(value: str) -> str:
    return re.sub(r"\s+", "_", value.strip())


def _upsert(records: list, record, matches: Callable[[Any], bool]) -> None:
    """Replace the first record ``matches`` accepts, or append ``record``."""
    for index, existing in enumerate(records):
        if matches(existing):
            records[index] = record
            return
    records.append(record)


class CampaignDatabaseManager:
    """
    Keeps one root document (campaigns, testimonials, rewards) in memory and
    persists it to IPFS as a whole on every write.

    Each save yields a new CID. Recording that CID somewhere readers can find
    it (see ``PointerFile``) is the caller's job.

    Mutations and saves on one manager are serialised by an ``asyncio.Lock``,
    so concurrent writers through the same instance never lose each other's
    changes. Writers in different processes still need the pointer file's
    compare-and-swap.
    """

    def __init__(self, pinata: PinataClient):
        self.pinata = pinata
        self._database: Optional[RootDocument] = None
        self._database_cid: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return self.pinata.configured

    @property
    def database(self) -> Optional[RootDocument]:
        return self._database

    @property
    def database_cid(self) -> Optional[str]:
        return self._database_cid

    def _require_configured(self):
        if not self.configured:
            raise StoreUnavailable()

    def _require_loaded(self) -> RootDocument:
        if self._database is None:
            raise NotLoaded()
        return self._database

    # -------------------------
    # Database lifecycle
    # -------------------------
    async def create_empty_database(self) -> str:
        self._require_configured()
        async with self._lock:
            database = RootDocument()
            cid = await self.pinata.upload_campaign_database(database.to_payload())
            self._database = database
            self._database_cid = cid
        logger.info("database.created", cid=cid)
        return cid

    async def load_database(self, cid: str) -> RootDocument:
        payload = await self.pinata.get_json(cid)
        database = RootDocument.from_payload(payload)
        async with self._lock:
            self._database = database
            self._database_cid = cid
        logger.info(
            "database.loaded",
            cid=cid,
            campaigns=len(database.campaigns),
            testimonials=len(database.testimonials),
            rewards=len(database.rewards),
        )
        return database

    async def save_database(self) -> str:
        """Upload the whole in-memory document and return its new CID."""
        async with self._lock:
            return await self._save()

    async def _save(self) -> str:
        return await self._commit(self._require_loaded())

    async def _commit(self, database: RootDocument) -> str:
        """
        Upload ``database`` and make it the current document.

        The in-memory state only changes once the upload has succeeded, so a
        failed write leaves the manager on the last persisted snapshot.
        """
        self._require_configured()
        try:
            cid = await self.pinata.upload_campaign_database(database.to_payload())
        except Exception as e:
            logger.error("database.save_failed", error=str(e))
            raise
        self._database = database
        self._database_cid = cid
        logger.info("database.saved", cid=cid)
        return cid

    # -------------------------
    # Entity uploads
    # -------------------------
    async def _upload_images(self, campaign: Campaign, images: List[ImageUpload]) -> None:
        for image in images:
            cid = await self.pinata.upload_base64_image(image.base64, image.filename, image.mimeType)
            if image.key == "campaignImage":
                campaign.campaignImageCID = cid
            elif image.key == "coverImage":
                campaign.coverImageCID = cid
            else:
                campaign.documentsCIDs.attach_file(image.key[len("document_"):], cid)

    async def upload_campaign(self, upload: CampaignUpload) -> str:
        """
        Upload a campaign, its images, and a new database snapshot containing it.

        The campaign replaces any stored campaign with the same ``id`` or is
        appended. Returns the CID of the standalone campaign blob, not the
        database CID (read ``database_cid`` for that).
        """
        self._require_configured()
        campaign = upload.campaign.model_copy(deep=True)
        if not campaign.id:
            raise MissingCampaignId()
        self._require_loaded()

        timestamp = now_ms()
        campaign.updated = timestamp
        if not campaign.created:
            campaign.created = timestamp

        async with self._lock:
            await self._upload_images(campaign, upload.images)
            campaign.metadataCID = None
            campaign_cid = await self.pinata.upload_campaign_metadata(campaign.model_dump(mode="json", exclude_none=True))
            campaign.metadataCID = campaign_cid

            updated = self._require_loaded().model_copy(deep=True)
            _upsert(updated.campaigns, campaign, lambda existing: existing.id == campaign.id)
            await self._commit(updated)

        logger.info("campaign.uploaded", campaign_id=campaign.id, cid=campaign_cid, database_cid=self._database_cid)
        return campaign_cid

    async def upload_testimonial(self, testimonial: Testimonial, author_image_base64: Optional[str] = None) -> str:
        self._require_configured()
        self._require_loaded()
        testimonial = testimonial.model_copy(deep=True)
        if not testimonial.created:
            testimonial.created = now_ms()

        async with self._lock:
            if author_image_base64:
                testimonial.authorImageCID = await self.pinata.upload_base64_image(
                    author_image_base64, f"author_{_slug(testimonial.authorName)}.png", "image/png"
                )
            testimonial.metadataCID = None
            testimonial_cid = await self.pinata.upload_testimonial(testimonial.model_dump(mode="json", exclude_none=True))
            testimonial.metadataCID = testimonial_cid

            updated = self._require_loaded().model_copy(deep=True)
            _upsert(
                updated.testimonials,
                testimonial,
                lambda existing: (
                    existing.authorName == testimonial.authorName and existing.campaignId == testimonial.campaignId
                ),
            )
            await self._commit(updated)

        logger.info("testimonial.uploaded", author=testimonial.authorName, cid=testimonial_cid)
        return testimonial_cid

    async def upload_reward(self, reward: Reward, reward_image_base64: Optional[str] = None) -> str:
        self._require_configured()
        self._require_loaded()
        reward = reward.model_copy(deep=True)
        if not reward.created:
            reward.created = now_ms()

        async with self._lock:
            if reward_image_base64:
                reward.imageCID = await self.pinata.upload_base64_image(
                    reward_image_base64, f"reward_{_slug(reward.title)}.png", "image/png"
                )
            reward.metadataCID = None
            reward_cid = await self.pinata.upload_reward(reward.model_dump(mode="json", exclude_none=True))
            reward.metadataCID = reward_cid

            updated = self._require_loaded().model_copy(deep=True)
            _upsert(
                updated.rewards,
                reward,
                lambda existing: existing.title == reward.title and existing.campaignId == reward.campaignId,
            )
            await self._commit(updated)

        logger.info("reward.uploaded", title=reward.title, cid=reward_cid)
        return reward_cid

    # -------------------------
    # Queries and funding
    # -------------------------
    def get_campaign(self, campaign_id: str) -> Campaign:
        for campaign in self._require_loaded().campaigns:
            if campaign.id == campaign_id:
                return campaign
        raise CampaignNotFound(campaign_id)

    def list_campaigns(self, status: Optional[CampaignStatus] = None) -> List[Campaign]:
        campaigns = self._require_loaded().campaigns
        if status is None:
            return list(campaigns)
        return [c for c in campaigns if c.status == status]

    def list_testimonials(self, campaign_id: Optional[str] = None) -> List[Testimonial]:
        testimonials = self._require_loaded().testimonials
        if campaign_id is None:
            return list(testimonials)
        return [t for t in testimonials if t.campaignId == campaign_id]

    def list_rewards(self, campaign_id: Optional[str] = None) -> List[Reward]:
        rewards = self._require_loaded().rewards
        if campaign_id is None:
            return list(rewards)
        return [r for r in rewards if r.campaignId == campaign_id]

    async def update_campaign_funding(
        self,
        campaign_id: str,
        raised_amount: float,
        donator_count: int,
        donation_count: int,
    ) -> str:
        """
        Set a campaign's funding counters and save. Returns the new database CID.

        Counters only move forward; a lower value raises ``FundingRegression``
        before anything is uploaded.
        """
        self._require_configured()
        async with self._lock:
            campaigns = self._require_loaded().campaigns
            for index, existing in enumerate(campaigns):
                if existing.id == campaign_id:
                    break
            else:
                raise CampaignNotFound(campaign_id)

            proposed = {
                "raisedAmount": raised_amount,
                "donatorCount": donator_count,
                "donationCount": donation_count,
            }
            for field, value in proposed.items():
                if value < getattr(existing, field):
                    raise FundingRegression(field, getattr(existing, field), value)

            updated = self._require_loaded().model_copy(deep=True)
            updated.campaigns[index] = existing.model_copy(update={**proposed, "updated": now_ms()})
            cid = await self._commit(updated)

        logger.info("campaign.funding_updated", campaign_id=campaign_id, database_cid=cid, **proposed)
        return cid
