DELEGATORS_FILENAME = "delegators.json"

# get_accounts page size and the number of page requests allowed in flight
LIMIT = 500
MAX_IN_FLIGHT_PAGES = 50

ATTEMPTS = 20
RETRY_DELAY_MS = 500

CACHE_TTL_SECONDS = 1800
BATCH_SIZE = 5

NUMBER_OF_ACCOUNTS_METHOD = "get_number_of_accounts"
ACCOUNTS_METHOD = "get_accounts"

# Every role that can be assigned a staking pool account
VALIDATOR_ROLES = (
    "current_validators",
    "next_validators",
    "current_fishermen",
    "next_fishermen",
    "current_proposals",
    "prev_epoch_kickout",
)
