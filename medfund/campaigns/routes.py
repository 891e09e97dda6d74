from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from medfund.campaigns.schemas import Campaign, CampaignListResponse
from medfund.campaigns.services import CampaignDatabaseManager
from medfund.core.enums.campaign import CampaignStatus
from medfund.core.exceptions import CampaignNotFound, MalformedDocument, StoreError
from medfund.core.logger import logger
from medfund.storage.pinata import PinataClient, get_pinata_client
from medfund.storage.pointer import PointerFile, get_pointer_file

router = APIRouter(prefix="/campaigns", tags=["Campaigns"])


async def load_latest_database(
    pointer: PointerFile = Depends(get_pointer_file),
    pinata: PinataClient = Depends(get_pinata_client),
) -> CampaignDatabaseManager:
    try:
        cid = pointer.current_cid()
    except (OSError, MalformedDocument) as e:
        logger.error("pointer.read_failed", path=str(pointer.path), error=str(e))
        raise HTTPException(status_code=500, detail=f"Failed to read latest CID: {e}")
    if cid is None:
        raise HTTPException(status_code=404, detail="No database CID has been recorded yet")
    manager = CampaignDatabaseManager(pinata)
    try:
        await manager.load_database(cid)
    except StoreError as e:
        raise HTTPException(status_code=502, detail=f"Failed to load database {cid}: {e}")
    return manager


@router.get("", response_model=CampaignListResponse, response_model_exclude_none=True)
async def list_campaigns(
    status: Optional[CampaignStatus] = Query(None, description="Only campaigns in this status"),
    manager: CampaignDatabaseManager = Depends(load_latest_database),
):
    return {"databaseCID": manager.database_cid, "campaigns": manager.list_campaigns(status)}


@router.get("/{campaign_id}", response_model=Campaign, response_model_exclude_none=True)
async def get_campaign(campaign_id: str, manager: CampaignDatabaseManager = Depends(load_latest_database)):
    try:
        return manager.get_campaign(campaign_id)
    except CampaignNotFound:
        raise HTTPException(status_code=404, detail="Campaign not found")
