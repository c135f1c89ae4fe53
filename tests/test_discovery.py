# tests/test_discovery.py
import pytest
from unittest.mock import AsyncMock

from staking_pools.discovery import get_all_validators, parse_validator_roles
from staking_pools.interfaces.rpc import RpcParseError, RpcTransientError


VALIDATORS_RESULT = {
    "current_validators": [{"account_id": "a.poolv1.near", "is_slashed": False}],
    "next_validators": [{"account_id": "a.poolv1.near"}, {"account_id": "b.poolv1.near"}],
    "current_fishermen": [{"account_id": "fish.near"}],
    "next_fishermen": [{"account_id": "fish2.near"}],
    "current_proposals": [{"account_id": "c.poolv1.near"}],
    "prev_epoch_kickout": [{"account_id": "kicked.poolv1.near", "reason": {"NotEnoughStake": {}}}],
    "epoch_start_height": 100,
}


@pytest.mark.asyncio
async def test_get_all_validators_includes_every_role():
    rpc = AsyncMock()
    rpc.validators.return_value = VALIDATORS_RESULT

    validators = await get_all_validators(rpc)

    rpc.validators.assert_awaited_once_with()
    assert validators == {
        "a.poolv1.near",
        "b.poolv1.near",
        "c.poolv1.near",
        "fish.near",
        "fish2.near",
        "kicked.poolv1.near",
    }


def test_missing_roles_are_empty():
    assert parse_validator_roles({"current_validators": [{"account_id": "a.near"}]}) == {"a.near"}


def test_malformed_role_entry():
    with pytest.raises(RpcParseError):
        parse_validator_roles({"current_validators": [{"stake": "1"}]})
    with pytest.raises(RpcParseError):
        parse_validator_roles({"next_validators": "a.near"})


@pytest.mark.asyncio
async def test_discovery_errors_are_not_retried():
    rpc = AsyncMock()
    rpc.validators.side_effect = RpcTransientError("HTTP 503")

    with pytest.raises(RpcTransientError):
        await get_all_validators(rpc)
    assert rpc.validators.await_count == 1
