import re
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


ACCOUNT_ID_RE = re.compile(r"^(([a-z\d]+[-_])*[a-z\d]+\.)*([a-z\d]+[-_])*[a-z\d]+$")
CRYPTO_HASH_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def is_valid_account_id(account_id: str) -> bool:
    return 2 <= len(account_id) <= 64 and ACCOUNT_ID_RE.match(account_id) is not None


class CacheSnapshot(BaseModel):
    """
    Committed state of the cache.

    - timestamp: unix seconds of the last successful merge (0 = never populated).
    - forward: validator -> delegators.
    - inverse: delegator -> validators, always derived from `forward`.
    - heights: validator -> block height its delegators were fetched at.
    """
    timestamp: int = 0
    forward: Dict[str, FrozenSet[str]] = Field(default_factory=dict)
    inverse: Dict[str, FrozenSet[str]] = Field(default_factory=dict)
    heights: Dict[str, int] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    def to_document(self) -> "DelegatorsWithTimestamp":
        return DelegatorsWithTimestamp(
            timestamp=self.timestamp,
            delegators={
                delegator: sorted(validators)
                for delegator, validators in sorted(self.inverse.items())
            },
        )


class DelegatorsWithTimestamp(BaseModel):
    timestamp: int = 0
    delegators: Dict[str, List[str]] = Field(default_factory=dict)


class DelegatorWithTimestamp(BaseModel):
    timestamp: int
    delegator_staking_pools: List[str]


class ValidatorWithTimestamp(BaseModel):
    timestamp: int
    validator_delegators: List[str]


class Actions(BaseModel):
    receipt_id: str = Field(..., description="Receipt that touched a staking pool")
    block_hash: Optional[str] = Field(
        default=None, description="Block the receipt was executed in"
    )

    @field_validator("receipt_id", "block_hash")
    @classmethod
    def validate_crypto_hash(cls, v):
        if v is not None and not CRYPTO_HASH_RE.match(v):
            raise ValueError("Invalid base58 crypto hash")
        return v


class Payload(BaseModel):
    actions: Actions = Field(..., alias="Actions")


class WebhookData(BaseModel):
    payload: Payload


class UpdateTrigger(BaseModel):
    receipt_id: str
    block_hash: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_webhook(cls, data: WebhookData) -> "UpdateTrigger":
        actions = data.payload.actions
        return cls(receipt_id=actions.receipt_id, block_hash=actions.block_hash)


class UpdateResponse(BaseModel):
    validator: str
    scheduled: bool
