"""
Tests for configuration and engine context construction
"""

import pytest
from unittest.mock import patch

from config import Config
from services.engine_context import EngineSettings, build_engine_context

from conftest import OTHER_OWNER_1, OWNER, SIGNER, make_context


class TestCandidateOwners:

    def test_signer_is_appended_last_without_duplicates(self):
        context = make_context(publishers=(OWNER, OTHER_OWNER_1, OWNER.upper().replace("0X", "0x"), SIGNER))
        assert context.candidate_owners == [OWNER, OTHER_OWNER_1, SIGNER]

    def test_notification_policy_follows_settings(self):
        policy = make_context(notify_max_attempts=5).notification_policy()
        assert policy.max_attempts == 5
        assert policy.retryable(Exception("nonce too low"))
        assert not policy.retryable(Exception("reverted"))


class TestConfig:

    def test_private_key_normalization(self):
        with patch.object(Config, "PRIVATE_KEY", "ab" * 32):
            assert Config.normalized_private_key() == "0x" + "ab" * 32
        with patch.object(Config, "PRIVATE_KEY", "0xnothex"):
            assert Config.normalized_private_key() is None

    def test_web3_backend_reports_missing_settings(self):
        with patch.object(Config, "CHAIN_BACKEND", "web3"), \
                patch.object(Config, "RPC_URL", ""), \
                patch.object(Config, "PRIVATE_KEY", ""), \
                patch.object(Config, "STREAMS_CONTRACT_ADDRESS", ""):
            problems = Config.validate()
            with pytest.raises(ValueError, match="RPC_URL is required"):
                build_engine_context(Config)
        assert len(problems) == 3

    def test_local_backend_needs_no_network_settings(self):
        with patch.object(Config, "CHAIN_BACKEND", "local"), \
                patch.object(Config, "PRIVATE_KEY", ""), \
                patch.object(Config, "LOCAL_CHAIN_DATABASE_URL", "sqlite:///:memory:"):
            assert Config.validate() == []
            context = build_engine_context(Config)
            assert context.settings == EngineSettings.from_config(Config)
        assert context.signer_address.startswith("0x")

    def test_publishers_are_deduplicated(self):
        with patch.object(Config, "PUBLISHER_ADDRESS", OWNER), \
                patch.object(Config, "WALLET_ADDRESS", OWNER.upper().replace("0X", "0x")), \
                patch.object(Config, "EXTRA_PUBLISHER_ADDRESSES", [OTHER_OWNER_1]):
            assert Config.candidate_publishers() == [OWNER, OTHER_OWNER_1]
