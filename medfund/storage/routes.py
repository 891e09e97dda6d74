from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from medfund.core.exceptions import Conflict, MalformedDocument
from medfund.core.logger import logger
from medfund.storage.pointer import PointerFile, get_pointer_file
from medfund.storage.schemas import UpdatePointerRequest

router = APIRouter(
    prefix="/ipfs",
    tags=["IPFS"],
)


@router.get("/latest-cid")
async def get_latest_cid(pointer: PointerFile = Depends(get_pointer_file)):
    """
    Returns the pointer file: the CID of the current campaign database.
    """
    try:
        record = pointer.read()
    except FileNotFoundError:
        return JSONResponse(status_code=404, content={"error": "No database CID has been recorded yet"})
    except (OSError, MalformedDocument) as e:
        logger.error("pointer.read_failed", path=str(pointer.path), error=str(e))
        return JSONResponse(status_code=500, content={"error": "Failed to read latest CID", "message": str(e)})
    return record.model_dump(exclude_none=True)


# TODO: require a bearer token here before exposing the service beyond localhost.
@router.post("/update-cid")
async def update_latest_cid(payload: UpdatePointerRequest, pointer: PointerFile = Depends(get_pointer_file)):
    """
    Records a new database CID.

    When ``expectedCID`` is present in the body the write is a compare-and-swap:
    it only happens if the pointer still names ``expectedCID`` (``null`` meaning
    no pointer exists yet), otherwise 409 is returned and the caller should
    reload the latest database and retry.
    """
    if not payload.databaseCID:
        return JSONResponse(status_code=400, content={"error": "databaseCID is required"})

    try:
        if "expectedCID" in payload.model_fields_set:
            pointer.compare_and_swap(payload.expectedCID, payload.databaseCID, payload.description)
        else:
            pointer.write(payload.databaseCID, payload.description)
    except Conflict as e:
        return JSONResponse(
            status_code=409,
            content={"error": "Conflict", "message": str(e), "databaseCID": e.actual},
        )
    except (OSError, MalformedDocument) as e:
        logger.error("pointer.write_failed", path=str(pointer.path), error=str(e))
        return JSONResponse(status_code=500, content={"error": "Failed to update CID file", "message": str(e)})

    return {"success": True, "databaseCID": payload.databaseCID}
