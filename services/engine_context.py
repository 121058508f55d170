"""
Engine Context
One explicit handle holding the settings and capability clients, built once
at process start and passed into every component constructor.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from web3 import AsyncHTTPProvider, AsyncWeb3

from config import Config
from database import build_engine, build_session_factory, create_tables
from services.identity_hasher import IdentityHasher
from services.ledger_client import LedgerClient, Web3LedgerClient
from services.local_chain import LocalLedger, LocalStreamStore
from services.retry_service import RetryPolicy, RetryService, notification_policy
from services.stream_client import StreamClient, Web3StreamClient
from services.stream_codec import REGISTRATION_SCHEMA, TRANSFER_RECORD_SCHEMA

logger = logging.getLogger(__name__)

# Signer used by the local backend when no PRIVATE_KEY is configured
LOCAL_SIGNER_ADDRESS = "0x" + "11" * 20


@dataclass(frozen=True)
class EngineSettings:
    """Read-only settings snapshot taken from Config"""
    default_country_code: str = "+60"
    native_tokens: Tuple[str, ...] = ("SOMI", "STT")
    registration_schema_name: str = "userRegistration"
    transfer_schema_name: str = "transferHistory"
    transfer_event_id: str = "TransferConfirmed"
    publishers: Tuple[str, ...] = ()
    confirmation_timeout: float = 120.0
    poll_interval: float = 1.0
    notify_max_attempts: int = 3
    notify_backoff_seconds: float = 2.0
    notify_settle_delay: float = 1.0
    history_default_limit: int = 10
    history_log_from_block: str = "earliest"
    webapp_base_url: str = "http://localhost:3000"

    @classmethod
    def from_config(cls, config=Config) -> "EngineSettings":
        return cls(
            default_country_code=config.DEFAULT_COUNTRY_CODE,
            native_tokens=tuple(config.NATIVE_TOKEN_SYMBOLS),
            registration_schema_name=config.REGISTRATION_SCHEMA_NAME,
            transfer_schema_name=config.TRANSFER_SCHEMA_NAME,
            transfer_event_id=config.TRANSFER_EVENT_ID,
            publishers=tuple(config.candidate_publishers()),
            confirmation_timeout=config.SETTLEMENT_CONFIRMATION_TIMEOUT,
            poll_interval=config.SETTLEMENT_POLL_INTERVAL,
            notify_max_attempts=config.NOTIFY_MAX_ATTEMPTS,
            notify_backoff_seconds=config.NOTIFY_BACKOFF_SECONDS,
            notify_settle_delay=config.NOTIFY_SETTLE_DELAY,
            history_default_limit=config.HISTORY_DEFAULT_LIMIT,
            history_log_from_block=config.HISTORY_LOG_FROM_BLOCK,
            webapp_base_url=config.WEBAPP_BASE_URL,
        )


@dataclass
class EngineContext:
    """Everything a component needs; no component reads module-level state"""
    settings: EngineSettings
    stream: StreamClient
    ledger: LedgerClient
    hasher: IdentityHasher
    retry: RetryService = field(default_factory=RetryService)

    @property
    def signer_address(self) -> str:
        return self.ledger.signer_address

    @property
    def candidate_owners(self) -> List[str]:
        """Configured publishers in order, then the signer, de-duplicated case-insensitively"""
        seen = set()
        owners = []
        for address in [*self.settings.publishers, self.signer_address]:
            if address and address.lower() not in seen:
                seen.add(address.lower())
                owners.append(address)
        return owners

    def notification_policy(self) -> RetryPolicy:
        return notification_policy(
            max_attempts=self.settings.notify_max_attempts,
            base_delay=self.settings.notify_backoff_seconds,
        )


def build_web3_context(config=Config, settings: Optional[EngineSettings] = None) -> EngineContext:
    problems = config.validate()
    if problems:
        raise ValueError("Invalid configuration: " + "; ".join(problems))
    settings = settings or EngineSettings.from_config(config)
    w3 = AsyncWeb3(AsyncHTTPProvider(config.RPC_URL))
    ledger = Web3LedgerClient(
        w3,
        config.normalized_private_key(),
        chain_id=config.CHAIN_ID,
        poll_interval=settings.poll_interval,
    )
    stream = Web3StreamClient(
        w3, ledger, config.STREAMS_CONTRACT_ADDRESS, write_timeout=settings.confirmation_timeout
    )
    logger.info(f"🔗 Web3 engine context ready (signer {ledger.signer_address})")
    return EngineContext(
        settings=settings,
        stream=stream,
        ledger=ledger,
        hasher=IdentityHasher(settings.default_country_code),
    )


def build_local_context(
    database_url: str,
    settings: Optional[EngineSettings] = None,
    signer_address: str = LOCAL_SIGNER_ADDRESS,
    retry: Optional[RetryService] = None,
    clock=None,
) -> EngineContext:
    """Engine over the SQLAlchemy local chain, with both schemas provisioned"""
    settings = settings or EngineSettings.from_config()
    engine = build_engine(database_url)
    create_tables(engine)
    session_factory = build_session_factory(engine)

    ledger_kwargs = {"clock": clock} if clock is not None else {}
    ledger = LocalLedger(session_factory, signer_address, **ledger_kwargs)
    stream = LocalStreamStore(session_factory, ledger)
    stream.register_schema(settings.registration_schema_name, REGISTRATION_SCHEMA)
    stream.register_schema(settings.transfer_schema_name, TRANSFER_RECORD_SCHEMA)
    logger.info(f"🧪 Local engine context ready on {database_url}")
    return EngineContext(
        settings=settings,
        stream=stream,
        ledger=ledger,
        hasher=IdentityHasher(settings.default_country_code),
        retry=retry or RetryService(),
    )


def build_engine_context(config=Config) -> EngineContext:
    """Build the context for the configured backend"""
    if config.CHAIN_BACKEND == "local":
        key = config.normalized_private_key()
        signer = Web3LedgerClient.address_for_key(key) if key else LOCAL_SIGNER_ADDRESS
        return build_local_context(config.LOCAL_CHAIN_DATABASE_URL, EngineSettings.from_config(config), signer)
    return build_web3_context(config)
