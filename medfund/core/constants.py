import os

from dotenv import load_dotenv

load_dotenv()

# Pinata
PINATA_JWT = os.getenv("PINATA_JWT", "")
PINATA_API_URL = os.getenv("PINATA_API_URL", "https://api.pinata.cloud")
PINATA_GATEWAY_URL = os.getenv("PINATA_GATEWAY_URL", "https://gateway.pinata.cloud/ipfs/")
PINATA_TIMEOUT_SECONDS = float(os.getenv("PINATA_TIMEOUT_SECONDS", "60"))

# Pointer file holding the latest database CID
POINTER_FILE_PATH = os.getenv("POINTER_FILE_PATH", "latest-db-cid.json")
POINTER_LOCK_TIMEOUT_SECONDS = float(os.getenv("POINTER_LOCK_TIMEOUT_SECONDS", "5"))
POINTER_LOCK_STALE_SECONDS = float(os.getenv("POINTER_LOCK_STALE_SECONDS", "60"))

DATABASE_NAME = "MedFund Campaign Database"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
