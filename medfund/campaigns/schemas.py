from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from medfund.core.enums.campaign import (
    CampaignStatus,
    DocumentReviewStatus,
    RewardStatus,
    RewardType,
    TestimonialStatus,
    TransactionStatus,
    VerificationStatus,
)
from medfund.core.exceptions import MalformedDocument

COLLECTIONS = ("campaigns", "testimonials", "rewards")


class StoredRecord(BaseModel):
    # documents written by other clients may carry extra keys; keep them on round trip
    model_config = ConfigDict(extra="allow")


# -------------------------
# Campaign
# -------------------------
class MedicalCondition(StoredRecord):
    summary: str
    diagnosisDate: Optional[str] = None
    treatmentPlanSummary: Optional[str] = None
    estimatedCost: Optional[float] = None


class HospitalInfo(StoredRecord):
    name: Optional[str] = None
    id: Optional[str] = None
    address: Optional[str] = None
    verificationCID: Optional[str] = None


class AdditionalFile(StoredRecord):
    name: str
    cid: str


class DocumentsCIDs(StoredRecord):
    medicalRecords: List[str] = Field(default_factory=list)
    verificationDocuments: List[str] = Field(default_factory=list)
    treatmentPlanFull: Optional[str] = None
    consentForms: List[str] = Field(default_factory=list)
    additionalFiles: List[AdditionalFile] = Field(default_factory=list)

    def attach_file(self, name: str, cid: str) -> None:
        """Record ``cid`` under ``name``, replacing an earlier file of that name."""
        for existing in self.additionalFiles:
            if existing.name == name:
                existing.cid = cid
                return
        self.additionalFiles.append(AdditionalFile(name=name, cid=cid))


class CampaignUpdate(StoredRecord):
    timestamp: int
    title: str
    content: str
    imageCIDs: List[str] = Field(default_factory=list)


class SocialLinks(StoredRecord):
    twitter: Optional[str] = None
    facebook: Optional[str] = None
    website: Optional[str] = None


class Campaign(StoredRecord):
    id: Optional[str] = None
    version: str = "1.0"
    title: str
    story: str
    goalAmount: float = Field(..., ge=0)
    currency: str = "ADA"
    category: str = "Medical"
    beneficiaryName: Optional[str] = None
    beneficiaryId: Optional[str] = None
    campaignImageCID: Optional[str] = None
    coverImageCID: Optional[str] = None
    hospitalInfo: Optional[HospitalInfo] = None
    medicalCondition: Optional[MedicalCondition] = None
    documentsCIDs: DocumentsCIDs = Field(default_factory=DocumentsCIDs)
    updates: List[CampaignUpdate] = Field(default_factory=list)
    contactEmail: Optional[str] = None
    socialLinks: Optional[SocialLinks] = None
    tags: List[str] = Field(default_factory=list)
    created: Optional[int] = None
    updated: Optional[int] = None
    endDate: Optional[int] = None
    status: CampaignStatus = CampaignStatus.DRAFT
    organizerId: Optional[str] = None
    raisedAmount: float = 0
    donatorCount: int = 0
    donationCount: int = 0
    metadataCID: Optional[str] = None

    @field_validator("raisedAmount", "donatorCount", "donationCount", mode="before")
    @classmethod
    def _zero_when_missing(cls, value):
        return 0 if value is None else value

    @field_validator("documentsCIDs", mode="before")
    @classmethod
    def _empty_documents(cls, value):
        return {} if value is None else value


class ImageUpload(BaseModel):
    """A base64 payload destined for one of a campaign's file slots."""

    key: str = Field(..., pattern=r"^(campaignImage|coverImage|document_.+)$")
    base64: str
    mimeType: str = "image/png"

    @property
    def filename(self) -> str:
        subtype = self.mimeType.split("/", 1)[1] if "/" in self.mimeType else ""
        return f"{self.key}.{subtype or 'png'}"


class CampaignUpload(BaseModel):
    campaign: Campaign
    images: List[ImageUpload] = Field(default_factory=list)


# -------------------------
# Testimonials & rewards
# -------------------------
class Testimonial(StoredRecord):
    version: str = "1.0"
    authorName: str
    authorImageCID: Optional[str] = None
    testimonialText: str
    rating: Optional[int] = Field(None, ge=1, le=5)
    campaignId: Optional[str] = None
    created: Optional[int] = None
    verified: bool = False
    location: Optional[str] = None
    status: TestimonialStatus = TestimonialStatus.PENDING
    metadataCID: Optional[str] = None


class Reward(StoredRecord):
    version: str = "1.0"
    title: str
    description: str
    imageCID: Optional[str] = None
    threshold: float = Field(..., ge=0)
    totalSupply: int = Field(..., ge=0)
    claimedCount: int = Field(0, ge=0)
    campaignId: Optional[str] = None
    status: RewardStatus = RewardStatus.ACTIVE
    type: RewardType = RewardType.DIGITAL
    created: Optional[int] = None
    metadataCID: Optional[str] = None

    @model_validator(mode="after")
    def _claims_within_supply(self):
        if self.claimedCount > self.totalSupply:
            raise ValueError("claimedCount cannot exceed totalSupply")
        return self


# -------------------------
# Documents, donations, verification
# -------------------------
class DocumentRecord(StoredRecord):
    id: str
    type: str
    cid: str
    name: Optional[str] = None
    mimeType: Optional[str] = None
    uploadedAt: Optional[str] = None
    status: DocumentReviewStatus = DocumentReviewStatus.PENDING
    notes: Optional[str] = None


class TransactionRecord(StoredRecord):
    txHash: str
    campaignId: str
    amount: float = Field(..., gt=0)
    currency: str = "ADA"
    donorAddress: Optional[str] = None
    timestamp: int
    status: TransactionStatus = TransactionStatus.PENDING


class VerificationAttestation(StoredRecord):
    campaignId: str
    campaignTitle: Optional[str] = None
    documents: List[DocumentRecord] = Field(default_factory=list)
    status: VerificationStatus = VerificationStatus.PENDING
    verifiedBy: Optional[str] = None
    verificationDate: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _completed_needs_verifier(self):
        if self.status == VerificationStatus.COMPLETED and not self.verifiedBy:
            raise ValueError("a completed verification must name verifiedBy")
        return self


# -------------------------
# Root document
# -------------------------
class RootDocument(StoredRecord):
    campaigns: List[Campaign] = Field(default_factory=list)
    testimonials: List[Testimonial] = Field(default_factory=list)
    rewards: List[Reward] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Any) -> "RootDocument":
        """
        Build a document from fetched JSON.

        Raises:
            MalformedDocument: the payload is not an object holding all three collections,
                or a record in them fails validation.
        """
        if not isinstance(data, dict):
            raise MalformedDocument(f"Database must be a JSON object, got {type(data).__name__}")
        missing = [name for name in COLLECTIONS if not isinstance(data.get(name), list)]
        if missing:
            raise MalformedDocument(f"Database is missing collections: {', '.join(missing)}")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedDocument(f"Database records are invalid: {e}") from e

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class CampaignListResponse(BaseModel):
    databaseCID: str
    campaigns: List[Campaign]
