from enum import Enum


class CampaignStatus(str, Enum):
    DRAFT = "draft"
    PENDING_VERIFICATION = "pending_verification"
    ACTIVE = "active"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    CANCELLED = "cancelled"


class TestimonialStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RewardStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    OUT_OF_STOCK = "out_of_stock"


class RewardType(str, Enum):
    DIGITAL = "digital"
    PHYSICAL = "physical"
    NFT = "nft"
    SPECIAL_ACCESS = "special_access"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    REJECTED = "rejected"


class DocumentReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
