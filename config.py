"""Configuration management for the phone-to-wallet transfer engine"""

import os
import re
import logging
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Optional .env next to the project root; real environment variables win
load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def mask_secret(value: Optional[str], show: int = 6) -> str:
    """Mask a secret for logging: keep the first and last few characters"""
    if not value:
        return "<missing>"
    if len(value) <= show * 2:
        return value
    return f"{value[:show]}...{value[-4:]}"


class Config:
    """Application configuration"""

    # Ledger access
    RPC_URL = os.getenv("RPC_URL", "").strip()
    PRIVATE_KEY = os.getenv("PRIVATE_KEY", "").strip()
    CHAIN_ID = int(os.getenv("CHAIN_ID", "0") or 0) or None

    # Keyed data/event service
    STREAMS_CONTRACT_ADDRESS = os.getenv("STREAMS_CONTRACT_ADDRESS", "").strip()

    # Candidate owners (publishers) searched by the resolver, in order
    PUBLISHER_ADDRESS = os.getenv("PUBLISHER_ADDRESS", "").strip()
    WALLET_ADDRESS = os.getenv("WALLET_ADDRESS", "").strip()
    EXTRA_PUBLISHER_ADDRESSES = _split_csv(os.getenv("EXTRA_PUBLISHER_ADDRESSES"))

    # Phone canonicalization
    DEFAULT_COUNTRY_CODE = os.getenv("DEFAULT_COUNTRY_CODE", "+60").strip()

    # Only native-token transfers are settled
    NATIVE_TOKEN_SYMBOLS = [
        symbol.upper() for symbol in _split_csv(os.getenv("NATIVE_TOKEN_SYMBOLS", "SOMI,STT"))
    ]

    # Schema / event identifiers in the keyed store
    REGISTRATION_SCHEMA_NAME = os.getenv("REGISTRATION_SCHEMA_NAME", "userRegistration")
    TRANSFER_SCHEMA_NAME = os.getenv("TRANSFER_SCHEMA_NAME", "transferHistory")
    TRANSFER_EVENT_ID = os.getenv("TRANSFER_EVENT_ID", "TransferConfirmed")

    # Settlement confirmation
    SETTLEMENT_CONFIRMATION_TIMEOUT = float(os.getenv("SETTLEMENT_CONFIRMATION_TIMEOUT", "120"))
    SETTLEMENT_POLL_INTERVAL = float(os.getenv("SETTLEMENT_POLL_INTERVAL", "1"))

    # Notification retry policy (linear backoff: attempt n waits n * base)
    NOTIFY_MAX_ATTEMPTS = int(os.getenv("NOTIFY_MAX_ATTEMPTS", "3"))
    NOTIFY_BACKOFF_SECONDS = float(os.getenv("NOTIFY_BACKOFF_SECONDS", "2"))
    NOTIFY_SETTLE_DELAY = float(os.getenv("NOTIFY_SETTLE_DELAY", "1"))

    # History
    HISTORY_DEFAULT_LIMIT = int(os.getenv("HISTORY_DEFAULT_LIMIT", "10"))
    HISTORY_LOG_FROM_BLOCK = os.getenv("HISTORY_LOG_FROM_BLOCK", "earliest")
    WEBAPP_BASE_URL = (
        os.getenv("WEBAPP_BASE_URL")
        or os.getenv("NEXT_PUBLIC_BASE_URL")
        or "http://localhost:3000"
    ).rstrip("/")

    # Backend selection: "web3" talks to a real node, "local" uses the SQLAlchemy chain
    CHAIN_BACKEND = os.getenv("CHAIN_BACKEND", "web3").lower().strip()
    LOCAL_CHAIN_DATABASE_URL = os.getenv("LOCAL_CHAIN_DATABASE_URL", "sqlite:///local_chain.db")

    PRIVATE_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")

    @classmethod
    def normalized_private_key(cls) -> Optional[str]:
        """Return the signer key as 0x-prefixed hex, or None if missing/malformed"""
        raw = (cls.PRIVATE_KEY or "").strip()
        if raw.startswith("0x"):
            raw = raw[2:]
        if not cls.PRIVATE_KEY_PATTERN.match(raw):
            return None
        return f"0x{raw}"

    @classmethod
    def candidate_publishers(cls) -> List[str]:
        """Configured owners in priority order, de-duplicated case-insensitively"""
        seen = set()
        owners = []
        for address in [cls.PUBLISHER_ADDRESS, cls.WALLET_ADDRESS, *cls.EXTRA_PUBLISHER_ADDRESSES]:
            if address and address.lower() not in seen:
                seen.add(address.lower())
                owners.append(address)
        return owners

    @classmethod
    def validate(cls) -> List[str]:
        """Return a list of configuration problems (empty when usable)"""
        problems = []
        if cls.CHAIN_BACKEND == "local":
            return problems
        if not cls.RPC_URL:
            problems.append("RPC_URL is required")
        if not cls.PRIVATE_KEY:
            problems.append("PRIVATE_KEY is required")
        elif cls.normalized_private_key() is None:
            problems.append(
                f"PRIVATE_KEY must be 32-byte hex (64 hex chars), got {mask_secret(cls.PRIVATE_KEY)}"
            )
        if not cls.STREAMS_CONTRACT_ADDRESS:
            problems.append("STREAMS_CONTRACT_ADDRESS is required")
        return problems

    @staticmethod
    def log_environment_config():
        """Log the effective configuration without revealing secrets"""
        logger.info("🔧 Transfer engine configuration:")
        logger.info(f"   Backend: {Config.CHAIN_BACKEND}")
        logger.info(f"   RPC URL: {Config.RPC_URL or '<missing>'}")
        logger.info(f"   Signer key: {mask_secret(Config.PRIVATE_KEY)}")
        logger.info(f"   Streams contract: {Config.STREAMS_CONTRACT_ADDRESS or '<missing>'}")
        logger.info(f"   Candidate publishers: {len(Config.candidate_publishers())}")
        logger.info(f"   Default country code: {Config.DEFAULT_COUNTRY_CODE}")
        logger.info(f"   Native tokens: {', '.join(Config.NATIVE_TOKEN_SYMBOLS)}")
        for problem in Config.validate():
            logger.error(f"   ❌ {problem}")
