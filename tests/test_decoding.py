"""Tests for escrow log decoding and payload construction."""
import pytest

from giftrecon.domain.decoding import (
    ESCROW_EVENTS,
    BlockClock,
    decode_log,
    derive_campaign_id,
    payload_from_args,
    topic0_of,
)
from giftrecon.domain.errors import EventDecodeError
from giftrecon.domain.models import EventLog, GiftClaimed, GiftCreated, GiftExpired, GiftReturned, GiftViewed

from fakes import CLAIMER, CREATOR, ESCROW, T0, claimed_log, created_log, expired_log, returned_log


class TestTopics:
    def test_topic0_shape(self):
        t0 = topic0_of("GiftCreated(uint256,uint256,address,uint256,uint256)")
        assert t0.startswith("0x")
        assert len(t0) == 66
        assert t0 == t0.lower()

    def test_topic0_is_keccak_of_signature(self):
        # well-known ERC-20 Transfer topic
        assert topic0_of("Transfer(address,address,uint256)") == (
            "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
        )

    def test_escrow_events_have_distinct_topics(self):
        assert len({s.topic0 for s in ESCROW_EVENTS}) == len(ESCROW_EVENTS) == 4


class TestDecodeLog:
    def test_created(self):
        p = decode_log(created_log(7, 5 * 10**18, block=10, tx=1, token_id=3, expires_at=1_800_000_000))
        assert isinstance(p, GiftCreated)
        assert (p.gift_id, p.token_id, p.amount, p.expires_at) == (7, 3, 5 * 10**18, 1_800_000_000)
        assert p.creator.lower() == CREATOR
        assert p.campaign_id == f"campaign_{p.creator[:10]}"

    def test_claimed(self):
        p = decode_log(claimed_log(7, block=11, tx=2, token_id=3))
        assert isinstance(p, GiftClaimed)
        assert p.claimer.lower() == CLAIMER
        assert p.campaign_id == "campaign_gift_7"

    def test_expired(self):
        p = decode_log(expired_log(9, block=12, tx=3, token_id=4))
        assert isinstance(p, GiftExpired)
        assert (p.gift_id, p.token_id) == (9, 4)

    def test_returned(self):
        p = decode_log(returned_log(9, 42, block=13, tx=4))
        assert isinstance(p, GiftReturned)
        assert p.amount == 42
        assert p.creator.lower() == CREATOR

    def test_short_data_is_rejected(self):
        good = created_log(1, 1, block=1, tx=1)
        short = EventLog(good.address, good.topics, good.data_hex[:66], 1, good.tx_hash, 0)
        with pytest.raises(EventDecodeError):
            decode_log(short)

    def test_missing_indexed_topic_is_rejected(self):
        log = EventLog(ESCROW.lower(), (T0["GiftClaimed"], "0x" + "0" * 63 + "1"), "0x" + "0" * 64, 1, "0xab", 0)
        with pytest.raises(EventDecodeError):
            decode_log(log)

    def test_unknown_topic0_is_rejected(self):
        log = EventLog(ESCROW.lower(), ("0x" + "ab" * 32,), "0x", 1, "0xab", 0)
        with pytest.raises(EventDecodeError):
            decode_log(log)

    def test_no_topics_is_rejected(self):
        with pytest.raises(EventDecodeError):
            decode_log(EventLog(ESCROW.lower(), (), "0x", 1, "0xab", 0))


class TestPayloadFromArgs:
    def test_hex_and_decimal_quantities(self):
        p = payload_from_args("GiftCreated", {
            "giftId": "0x10", "tokenId": "2", "creator": CREATOR, "amount": "1000", "expiresAt": 0,
        })
        assert (p.gift_id, p.token_id, p.amount) == (16, 2, 1000)

    def test_addresses_are_checksummed(self):
        p = payload_from_args("GiftClaimed", {"giftId": 1, "claimer": CLAIMER.upper().replace("0X", "0x")})
        assert p.claimer.lower() == CLAIMER
        assert p.claimer != CLAIMER.upper()

    def test_invalid_address(self):
        with pytest.raises(EventDecodeError):
            payload_from_args("GiftClaimed", {"giftId": 1, "claimer": "0xnot-an-address"})

    def test_missing_amount(self):
        with pytest.raises(EventDecodeError):
            payload_from_args("GiftCreated", {"giftId": 1, "creator": CREATOR})

    def test_viewed_without_viewer(self):
        p = payload_from_args("GiftViewed", {"giftId": 5})
        assert isinstance(p, GiftViewed)
        assert p.viewer is None
        assert p.data() == {}

    def test_explicit_campaign_wins(self):
        p = payload_from_args("GiftCreated", {
            "giftId": 1, "creator": CREATOR, "amount": 1, "campaignId": "spring-drop",
        })
        assert p.campaign_id == "spring-drop"


class TestCampaignId:
    def test_precedence(self):
        assert derive_campaign_id({"campaignId": "c1", "creator": CREATOR, "giftId": 3}) == "c1"
        assert derive_campaign_id({"creator": "0xAbCdEf0123456789", "giftId": 3}) == "campaign_0xAbCdEf01"
        assert derive_campaign_id({"giftId": 3}) == "campaign_gift_3"
        assert derive_campaign_id({"giftId": 0}) == "campaign_gift_0"
        assert derive_campaign_id({}) == "default"


class TestBlockClock:
    def test_estimate(self):
        assert BlockClock().estimate(0) == 1695768288
        assert BlockClock().estimate(10) == 1695768288 + 20
        assert BlockClock(genesis_timestamp=100, block_time_s=12.0).estimate(3) == 136
