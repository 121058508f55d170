"""
Shared fixtures for the transfer engine tests.

Every test gets its own in-memory SQLite local chain (keyed store + ledger on
one connection) so tests never share registrations or nonces.
"""

import itertools
import logging
from typing import Optional

import pytest

from services.engine_context import EngineContext, EngineSettings, build_local_context
from services.stream_codec import REGISTRATION_SCHEMA, encode_registration

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

OWNER = "0x" + "0a" * 20
OTHER_OWNER_1 = "0x" + "0b" * 20
OTHER_OWNER_2 = "0x" + "0c" * 20
SIGNER = "0x" + "5a" * 20

WALLET_A = "0x" + "aa" * 20
WALLET_B = "0x" + "bb" * 20

PHONE_A = "012-345 6789"
PHONE_B = "+60 19-876 5432"


def make_settings(**overrides) -> EngineSettings:
    """Zero delays so retries and settle waits never sleep"""
    values = dict(
        default_country_code="+60",
        native_tokens=("SOMI", "STT"),
        publishers=(OTHER_OWNER_1, OTHER_OWNER_2, OWNER),
        confirmation_timeout=5.0,
        poll_interval=0.0,
        notify_max_attempts=3,
        notify_backoff_seconds=0.0,
        notify_settle_delay=0.0,
        history_default_limit=10,
        webapp_base_url="https://app.example.test",
    )
    values.update(overrides)
    return EngineSettings(**values)


def make_context(**overrides) -> EngineContext:
    clock = itertools.count(1_700_000_000, 60)
    return build_local_context(
        "sqlite:///:memory:",
        settings=make_settings(**overrides),
        signer_address=SIGNER,
        clock=lambda: next(clock),
    )


def register_phone(
    context: EngineContext,
    phone: str,
    wallet: str,
    owner: str = OWNER,
    key: Optional[str] = None,
    identity: Optional[str] = None,
) -> str:
    """Write a registration the way the external registration flow does; returns the identity hash"""
    identity = identity or context.hasher.identity_for(phone)
    schema_id = context.stream.register_schema(context.settings.registration_schema_name, REGISTRATION_SCHEMA)
    payload = encode_registration(identity, wallet, '{"source": "test"}', 1_700_000_000)
    context.stream.put_entry(owner, schema_id, key or identity, payload)
    return identity


@pytest.fixture
def context() -> EngineContext:
    return make_context()


@pytest.fixture
def registered_context(context) -> EngineContext:
    """PHONE_A -> WALLET_A under OWNER"""
    register_phone(context, PHONE_A, WALLET_A)
    return context
