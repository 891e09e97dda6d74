from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class PinataMetadata(BaseModel):
    name: str
    keyvalues: Dict[str, str] = Field(default_factory=dict)


class PinResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    IpfsHash: str
    PinSize: Optional[int] = None
    Timestamp: Optional[str] = None
    isDuplicate: Optional[bool] = None


class PointerRecord(BaseModel):
    """Contents of the pointer file naming the current database snapshot."""

    model_config = ConfigDict(extra="allow")

    databaseCID: str
    updatedAt: Optional[str] = None
    description: Optional[str] = None


class UpdatePointerRequest(BaseModel):
    databaseCID: Optional[str] = None
    expectedCID: Optional[str] = None
    description: Optional[str] = None
