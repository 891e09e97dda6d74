import hashlib
import json
import re

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from medfund.campaigns.services import CampaignDatabaseManager
from medfund.main import app
from medfund.storage.pinata import PinataClient, get_pinata_client
from medfund.storage.pointer import PointerFile, get_pointer_file

API_URL = "https://api.pinata.test"
GATEWAY_URL = "https://gateway.pinata.test/ipfs/"


def _parse_multipart(request: httpx.Request) -> dict:
    """Split a multipart body into {field name: (filename, content type, bytes)}."""
    boundary = request.headers["content-type"].split("boundary=", 1)[1].strip('"').encode()
    parts = {}
    for chunk in request.read().split(b"--" + boundary):
        head, sep, body = chunk.partition(b"\r\n\r\n")
        if not sep:
            continue
        name = re.search(rb'name="([^"]*)"', head).group(1).decode()
        filename = re.search(rb'filename="([^"]*)"', head)
        content_type = re.search(rb"Content-Type: ([^\r\n]+)", head, re.IGNORECASE)
        parts[name] = (
            filename.group(1).decode() if filename else None,
            content_type.group(1).decode() if content_type else None,
            body[:-2],  # CRLF before the next boundary
        )
    return parts


class FakePinata:
    """In-process stand-in for the pinning API and gateway, addressed by sha256."""

    def __init__(self):
        self.blobs = {}
        self.pins = []
        self.unpinned = []
        self.requests = []
        self.fail_uploads_with = None
        self.fail_pins_of_type = None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST" and request.url.path == "/pinning/pinFileToIPFS":
            return self._pin(request)
        if request.method == "DELETE" and request.url.path.startswith("/pinning/unpin/"):
            return self._unpin(request)
        if request.method == "GET" and request.url.path.startswith("/ipfs/"):
            cid = request.url.path[len("/ipfs/"):]
            if cid not in self.blobs:
                return httpx.Response(404, text="Not Found")
            content_type, content = self.blobs[cid]
            return httpx.Response(200, content=content, headers={"content-type": content_type})
        return httpx.Response(405)

    def _pin(self, request: httpx.Request) -> httpx.Response:
        if self.fail_uploads_with is not None:
            return httpx.Response(self.fail_uploads_with, json={"error": "pinning quota exceeded"})
        if request.headers.get("authorization") != "Bearer test-jwt":
            return httpx.Response(401, json={"error": "Invalid token"})
        parts = _parse_multipart(request)
        filename, content_type, content = parts["file"]
        metadata = json.loads(parts["pinataMetadata"][2]) if "pinataMetadata" in parts else None
        pin_type = (metadata or {}).get("keyvalues", {}).get("type")
        if pin_type is not None and pin_type == self.fail_pins_of_type:
            return httpx.Response(503, json={"error": "pinning temporarily unavailable"})
        cid = "bafy" + hashlib.sha256(content).hexdigest()[:44]
        self.blobs[cid] = (content_type or "application/octet-stream", content)
        self.pins.append({"cid": cid, "filename": filename, "metadata": metadata})
        return httpx.Response(200, json={"IpfsHash": cid, "PinSize": len(content), "Timestamp": "2026-01-01T00:00:00Z"})

    def _unpin(self, request: httpx.Request) -> httpx.Response:
        if request.headers.get("authorization") != "Bearer test-jwt":
            return httpx.Response(401, json={"error": "Invalid token"})
        cid = request.url.path[len("/pinning/unpin/"):]
        if cid not in self.blobs:
            return httpx.Response(404, json={"error": "CURRENT_USER_HAS_NOT_PINNED_CID"})
        del self.blobs[cid]
        self.unpinned.append(cid)
        return httpx.Response(200, text="OK")

    def put_json(self, content) -> str:
        data = json.dumps(content).encode("utf-8")
        cid = "bafy" + hashlib.sha256(data).hexdigest()[:44]
        self.blobs[cid] = ("application/json", data)
        return cid

    def json_at(self, cid: str):
        return json.loads(self.blobs[cid][1])

    def pins_of_type(self, pin_type: str) -> list:
        return [p for p in self.pins if (p["metadata"] or {}).get("keyvalues", {}).get("type") == pin_type]


@pytest.fixture
def fake_pinata():
    return FakePinata()


def make_client(fake: FakePinata, jwt: str = "test-jwt") -> PinataClient:
    return PinataClient(jwt=jwt, api_url=API_URL, gateway_url=GATEWAY_URL, transport=fake.transport)


@pytest_asyncio.fixture
async def pinata(fake_pinata):
    client = make_client(fake_pinata)
    yield client
    await client.close()


@pytest_asyncio.fixture
async def unconfigured_pinata(fake_pinata):
    client = make_client(fake_pinata, jwt="")
    yield client
    await client.close()


@pytest_asyncio.fixture
async def manager(pinata):
    return CampaignDatabaseManager(pinata)


@pytest.fixture
def pointer(tmp_path):
    return PointerFile(tmp_path / "latest-db-cid.json", lock_timeout=0.2)


@pytest.fixture
def client(fake_pinata, pointer):
    async def _test_pinata():
        test_client = make_client(fake_pinata)
        try:
            yield test_client
        finally:
            await test_client.close()

    app.dependency_overrides[get_pinata_client] = _test_pinata
    app.dependency_overrides[get_pointer_file] = lambda: pointer
    yield TestClient(app)
    app.dependency_overrides.clear()
