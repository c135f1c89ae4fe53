# discovery.py
# Lists every account currently playing a validator role

from typing import Set

from .constants import VALIDATOR_ROLES
from .interfaces.rpc import NearRpcClient, RpcParseError
from .logging_utils import get_logger


logger = get_logger(__name__)


def parse_validator_roles(result: dict) -> Set[str]:
    validators: Set[str] = set()
    for role in VALIDATOR_ROLES:
        entries = result.get(role) or []
        if not isinstance(entries, list):
            raise RpcParseError(f"Unexpected {role} in validators result: {entries!r}")
        for entry in entries:
            try:
                validators.add(str(entry["account_id"]))
            except (KeyError, TypeError) as e:
                raise RpcParseError(f"Unexpected {role} entry: {entry!r}") from e
    return validators


async def get_all_validators(rpc: NearRpcClient) -> Set[str]:
    """
    Union of current and next validators, current and next fishermen, current
    proposals and the accounts kicked out in the previous epoch, as of the
    latest block. The `validators` request carries no block height.

    Errors are not retried; a failed discovery aborts the refresh cycle.
    """
    logger.info("Fetching all validators")
    result = await rpc.validators()
    validators = parse_validator_roles(result)
    logger.info(f"Found {len(validators)} validators")
    return validators
