import base64
import binascii
import json
import mimetypes
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import httpx

from medfund.core.constants import (
    DATABASE_NAME,
    PINATA_API_URL,
    PINATA_GATEWAY_URL,
    PINATA_JWT,
    PINATA_TIMEOUT_SECONDS,
)
from medfund.core.exceptions import (
    FetchFailed,
    MalformedDocument,
    NotFound,
    StoreUnavailable,
    UnpinFailed,
    UploadFailed,
)
from medfund.core.logger import logger
from medfund.storage.schemas import PinataMetadata, PinResponse

DEFAULT_PIN_NAME = "MedFund Data"


def decode_base64_payload(base64_data: str) -> bytes:
    """
    Decode a base64 string, accepting an optional ``data:<mime>;base64,`` prefix.

    Raises:
        ValueError: if the payload is not valid base64.
    """
    if "base64," in base64_data:
        base64_data = base64_data.split("base64,", 1)[1]
    try:
        return base64.b64decode("".join(base64_data.split()), validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e


class PinataClient:
    """
    Async client for the Pinata pinning API and an IPFS HTTP gateway.

    Uploads are single-shot multipart POSTs to ``pinFileToIPFS`` and return the
    CID Pinata assigns. Reads go through the gateway as ``{gateway}{cid}``.
    Nothing is retried; every failure surfaces to the caller.
    """

    def __init__(
        self,
        jwt: Optional[str] = PINATA_JWT,
        api_url: str = PINATA_API_URL,
        gateway_url: str = PINATA_GATEWAY_URL,
        timeout: float = PINATA_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            jwt: Pinata bearer token. Empty or None leaves the client unconfigured.
            api_url: Base URL of the pinning API.
            gateway_url: Gateway prefix a CID is appended to.
            timeout: Read timeout in seconds for a single request.
            transport: Optional httpx transport (used to plug in a fake store).
        """
        self.jwt = jwt or ""
        self.api_url = api_url.rstrip("/")
        self.gateway = gateway_url if gateway_url.endswith("/") else f"{gateway_url}/"
        self.client = httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(10.0, read=timeout),
            follow_redirects=True,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        await self.client.aclose()

    @property
    def configured(self) -> bool:
        return bool(self.jwt)

    @property
    def gateway_url(self) -> str:
        return self.gateway

    def _require_configured(self):
        if not self.configured:
            raise StoreUnavailable()

    @staticmethod
    def _metadata_form(default_name: str, metadata: Optional[Dict[str, Any]]) -> Optional[Dict[str, str]]:
        if not metadata:
            return None
        keyvalues = {k: str(v) for k, v in metadata.items() if v is not None}
        pin_metadata = PinataMetadata(name=keyvalues.get("name") or default_name, keyvalues=keyvalues)
        return {"pinataMetadata": pin_metadata.model_dump_json()}

    async def _pin(self, files: Dict[str, Tuple[str, bytes, str]], data: Optional[Dict[str, str]]) -> str:
        url = f"{self.api_url}/pinning/pinFileToIPFS"
        try:
            response = await self.client.post(
                url,
                headers={"Authorization": f"Bearer {self.jwt}"},
                files=files,
                data=data,
            )
        except httpx.RequestError as e:
            logger.error("pinata.upload_error", url=url, error=str(e))
            raise UploadFailed(None, str(e)) from e

        if not response.is_success:
            logger.error("pinata.upload_failed", status_code=response.status_code, body=response.text)
            raise UploadFailed.from_response(response)

        try:
            pin = PinResponse.model_validate(response.json())
        except ValueError as e:
            raise UploadFailed(response.status_code, f"Unexpected pin response: {response.text}") from e
        return pin.IpfsHash

    # -------------------------
    # Uploads
    # -------------------------
    async def upload_file(
        self,
        data: Union[bytes, Path],
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Pin raw bytes or a file on disk and return its CID.

        Args:
            data: Bytes to upload, or a Path to a file.
            filename: Name recorded with the pin; defaults to the file's name.
            mime_type: Content type; guessed from the filename when omitted.
            metadata: Optional key-value tags stored as ``pinataMetadata``.
        """
        self._require_configured()
        if isinstance(data, Path):
            if not data.is_file():
                raise FileNotFoundError(f"File not found: {data}")
            filename = filename or data.name
            content = data.read_bytes()
        elif isinstance(data, (bytes, bytearray)):
            content = bytes(data)
        else:
            raise TypeError("Data must be bytes or a Path object pointing to a file.")

        filename = filename or "file"
        mime_type = mime_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        cid = await self._pin(
            files={"file": (filename, content, mime_type)},
            data=self._metadata_form(filename, metadata),
        )
        logger.info("pinata.file_pinned", cid=cid, filename=filename, size=len(content))
        return cid

    async def upload_json(
        self,
        content: Any,
        metadata: Optional[Dict[str, Any]] = None,
        filename: str = "data.json",
    ) -> str:
        """Serialize ``content`` to a JSON file and pin it."""
        self._require_configured()
        payload = json.dumps(content, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        cid = await self._pin(
            files={"file": (filename, payload, "application/json")},
            data=self._metadata_form(DEFAULT_PIN_NAME, metadata),
        )
        logger.info("pinata.json_pinned", cid=cid, size=len(payload))
        return cid

    async def upload_base64_image(
        self,
        base64_data: str,
        filename: str = "image.png",
        mime_type: str = "image/png",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        self._require_configured()
        content = decode_base64_payload(base64_data)
        return await self.upload_file(content, filename=filename, mime_type=mime_type, metadata=metadata)

    async def upload_campaign_metadata(self, campaign: Dict[str, Any]) -> str:
        return await self.upload_json(
            campaign,
            {
                "type": "campaign",
                "title": campaign.get("title"),
                "category": campaign.get("category"),
                "created": campaign.get("created"),
            },
        )

    async def upload_testimonial(self, testimonial: Dict[str, Any]) -> str:
        return await self.upload_json(
            testimonial,
            {
                "type": "testimonial",
                "author": testimonial.get("authorName"),
                "campaignId": testimonial.get("campaignId") or "",
            },
        )

    async def upload_reward(self, reward: Dict[str, Any]) -> str:
        return await self.upload_json(
            reward,
            {
                "type": "reward",
                "title": reward.get("title"),
                "campaignId": reward.get("campaignId") or "",
            },
        )

    async def upload_campaign_database(self, database: Dict[str, Any]) -> str:
        return await self.upload_json(
            database,
            {
                "type": "database",
                "name": DATABASE_NAME,
                "timestamp": int(time.time() * 1000),
            },
        )

    async def unpin(self, cid: str) -> None:
        """
        Remove our pin on ``cid``. Snapshots are never deleted implicitly, so
        superseded ones stay pinned until someone calls this.
        """
        self._require_configured()
        if not cid:
            raise ValueError("CID is required to unpin content.")
        url = f"{self.api_url}/pinning/unpin/{cid}"
        try:
            response = await self.client.delete(url, headers={"Authorization": f"Bearer {self.jwt}"})
        except httpx.RequestError as e:
            logger.error("pinata.unpin_error", cid=cid, error=str(e))
            raise UnpinFailed(None, str(e)) from e

        if not response.is_success:
            logger.error("pinata.unpin_failed", cid=cid, status_code=response.status_code, body=response.text)
            raise UnpinFailed.from_response(response)
        logger.info("pinata.unpinned", cid=cid)

    # -------------------------
    # Gateway reads
    # -------------------------
    async def get_bytes(self, cid: str) -> Tuple[bytes, str]:
        """Fetch the raw content behind ``cid`` and its content type."""
        if not cid:
            raise ValueError("CID is required to fetch content.")
        url = f"{self.gateway}{cid}"
        try:
            response = await self.client.get(url)
        except httpx.RequestError as e:
            logger.error("pinata.fetch_error", cid=cid, error=str(e))
            raise FetchFailed(None, str(e)) from e

        if response.status_code == 404:
            raise NotFound(404, f"{cid} not found on gateway")
        if not response.is_success:
            logger.error("pinata.fetch_failed", cid=cid, status_code=response.status_code)
            raise FetchFailed.from_response(response)
        return response.content, response.headers.get("content-type", "application/octet-stream")

    async def get_json(self, cid: str) -> Any:
        content, _ = await self.get_bytes(cid)
        try:
            return json.loads(content)
        except ValueError as e:
            raise MalformedDocument(f"Content at {cid} is not valid JSON: {e}") from e

    async def get_image_as_base64(self, cid: str) -> str:
        """Fetch an image and return it as a ``data:`` URL."""
        content, content_type = await self.get_bytes(cid)
        mime_type = content_type.split(";")[0].strip() or "application/octet-stream"
        return f"data:{mime_type};base64,{base64.b64encode(content).decode('ascii')}"


def new_pinata_client() -> PinataClient:
    return PinataClient()


async def get_pinata_client():
    client = new_pinata_client()
    try:
        yield client
    finally:
        await client.close()
