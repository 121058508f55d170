"""
Registry Resolver
Maps an identity hash to a wallet address through the keyed store.

Registrations may have been written under any of several candidate owners
(publishers), so each lookup strategy walks the owners in order. Strategies
form an explicit ordered chain; each reports FOUND, NOT_FOUND or
TRANSIENT_ERROR and the chain stops at the first FOUND.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from services.engine_context import EngineContext
from services.identity_hasher import is_identity_hash, same_hash
from services.stream_client import StreamClient
from services.stream_codec import Registration, decode_registration
from utils.exception_handler import SchemaNotProvisioned, StoreUnavailable

logger = logging.getLogger(__name__)


class LookupStatus(Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    TRANSIENT_ERROR = "transient_error"


@dataclass(frozen=True)
class Resolution:
    """Outcome of one strategy, or of the whole chain"""
    status: LookupStatus
    wallet_address: Optional[str] = None
    owner: Optional[str] = None
    strategy: Optional[str] = None
    registration: Optional[Registration] = None
    owners_failed: int = 0

    @property
    def found(self) -> bool:
        return self.status is LookupStatus.FOUND


class LookupStrategy:
    """One named way of searching the owners for a registration"""

    name = "base"

    async def find(
        self, stream: StreamClient, schema_id: str, identity_hash: str, owners: Sequence[str]
    ) -> Resolution:
        found = None
        failures = 0
        for owner in owners:
            try:
                found = await self.find_for_owner(stream, schema_id, identity_hash, owner)
            except Exception as e:
                # One bad owner must not block the rest
                failures += 1
                logger.warning(f"⚠️ {self.name}: lookup under owner {owner[:10]}... failed: {e}")
                continue
            if found is not None:
                return Resolution(
                    status=LookupStatus.FOUND,
                    wallet_address=found.wallet_address,
                    owner=owner,
                    strategy=self.name,
                    registration=found,
                    owners_failed=failures,
                )

        if owners and failures == len(owners):
            return Resolution(status=LookupStatus.TRANSIENT_ERROR, strategy=self.name, owners_failed=failures)
        return Resolution(status=LookupStatus.NOT_FOUND, strategy=self.name, owners_failed=failures)

    async def find_for_owner(
        self, stream: StreamClient, schema_id: str, identity_hash: str, owner: str
    ) -> Optional[Registration]:
        raise NotImplementedError


class DirectKeyLookup(LookupStrategy):
    """Keyed lookup by identity hash; the decoded hash must match the query key"""

    name = "direct_key"

    async def find_for_owner(self, stream, schema_id, identity_hash, owner):
        for entry in await stream.get_by_key(schema_id, owner, identity_hash):
            registration = decode_registration(entry, publisher=owner)
            if registration is None:
                continue
            if same_hash(registration.identity_hash, identity_hash):
                return registration
            # Store returned a different identity for this key; treat as a miss
            logger.debug(f"{self.name}: key {identity_hash[:12]}... returned mismatched entry under {owner[:10]}...")
        return None


class OwnerBulkScan(LookupStrategy):
    """Fetch every registration for the owner and scan for the hash"""

    name = "bulk_scan"

    async def find_for_owner(self, stream, schema_id, identity_hash, owner):
        entries = await stream.get_all_for_owner(schema_id, owner)
        logger.debug(f"{self.name}: scanning {len(entries)} registrations under {owner[:10]}...")
        for entry in entries:
            registration = decode_registration(entry, publisher=owner)
            if registration is not None and same_hash(registration.identity_hash, identity_hash):
                return registration
        return None


DEFAULT_STRATEGIES = (DirectKeyLookup(), OwnerBulkScan())


class RegistryResolver:
    """Resolve identity hashes to wallets (and wallets back to identity hashes)"""

    def __init__(self, context: EngineContext, strategies: Sequence[LookupStrategy] = DEFAULT_STRATEGIES):
        self.context = context
        self.stream = context.stream
        self.schema_name = context.settings.registration_schema_name
        self.strategies = list(strategies)

    async def registration_schema_id(self) -> str:
        try:
            schema_id = await self.stream.schema_id(self.schema_name)
        except Exception as e:
            raise StoreUnavailable(f"Could not look up the {self.schema_name} schema: {e}") from e
        if not schema_id:
            raise SchemaNotProvisioned(self.schema_name)
        return schema_id

    async def lookup(self, identity_hash: str, owners: Optional[Sequence[str]] = None) -> Resolution:
        """Run the strategy chain; NOT_FOUND and TRANSIENT_ERROR are returned, never raised"""
        owners = list(owners) if owners is not None else self.context.candidate_owners
        schema_id = await self.registration_schema_id()

        last = Resolution(status=LookupStatus.NOT_FOUND)
        for strategy in self.strategies:
            result = await strategy.find(self.stream, schema_id, identity_hash, owners)
            if result.found:
                logger.info(
                    f"✅ Resolved {identity_hash[:12]}... to {result.wallet_address} "
                    f"via {result.strategy} (owner {result.owner[:10]}...)"
                )
                return result
            logger.debug(f"{strategy.name}: {result.status.value} for {identity_hash[:12]}...")
            last = result

        logger.info(f"❌ No registration for {identity_hash[:12]}... across {len(owners)} owners")
        return Resolution(status=LookupStatus.NOT_FOUND, owners_failed=last.owners_failed)

    async def resolve(self, identity_hash: str, owners: Optional[Sequence[str]] = None) -> Optional[str]:
        """Wallet address for the identity, or None when it is not registered"""
        resolution = await self.lookup(identity_hash, owners)
        return resolution.wallet_address if resolution.found else None

    async def find_identity_for_wallet(
        self, wallet_address: str, owners: Optional[Sequence[str]] = None
    ) -> Optional[str]:
        """Reverse lookup: O(n) scan of every owner's registrations for the wallet"""
        owners = list(owners) if owners is not None else self.context.candidate_owners
        schema_id = await self.registration_schema_id()
        wanted = wallet_address.lower()

        for owner in owners:
            try:
                entries = await self.stream.get_all_for_owner(schema_id, owner)
            except Exception as e:
                logger.warning(f"⚠️ Reverse lookup under owner {owner[:10]}... failed: {e}")
                continue
            for entry in entries:
                registration = decode_registration(entry, publisher=owner)
                if registration is not None and registration.wallet_address.lower() == wanted:
                    if is_identity_hash(registration.identity_hash):
                        logger.info(f"✅ Wallet {wallet_address[:10]}... belongs to {registration.identity_hash[:12]}...")
                        return registration.identity_hash
        logger.info(f"❌ No registration found for wallet {wallet_address[:10]}...")
        return None

