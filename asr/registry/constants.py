"""Registry-wide limits and sizes."""

MAX_AGENT_IDS_PER_SERVICE = 128
MAX_AGENT_INSTANCES_PER_SERVICE = 192
MAX_MULTISIGS = 16

MAX_NAME_LENGTH = 256
MAX_SYMBOL_LENGTH = 64
MAX_URI_LENGTH = 512

REGISTRY_VERSION = "1.0.0"

U32_MAX = 2**32 - 1
U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1

# Serialized sizes (bytes) reserved per record kind: discriminator + JSON body.
# Ids render as 64 hex chars, so list-bearing records reserve ~70 bytes per entry.
DISCRIMINATOR_SIZE = 8

# Fixed JSON around an instance index: wrapper, field names, operator hex and a
# 39-digit u128 service id come to under 200 bytes.
INSTANCES_INDEX_HEADER = 256


def agent_ids_index_space(max_agent_ids: int) -> int:
    return DISCRIMINATOR_SIZE + 64 + max_agent_ids * 72


def instances_index_space(max_instances: int) -> int:
    return DISCRIMINATOR_SIZE + INSTANCES_INDEX_HEADER + max_instances * 70


def multisig_whitelist_space(max_multisigs: int) -> int:
    return DISCRIMINATOR_SIZE + 128 + max_multisigs * 70


REGISTRY_SPACE = DISCRIMINATOR_SIZE + 1024 + 12 * (MAX_NAME_LENGTH + MAX_SYMBOL_LENGTH + MAX_URI_LENGTH)
SERVICE_SPACE = DISCRIMINATOR_SIZE + 512
AGENT_PARAM_SPACE = DISCRIMINATOR_SIZE + 192
AGENT_IDS_INDEX_SPACE = agent_ids_index_space(MAX_AGENT_IDS_PER_SERVICE)
AGENT_SLOT_SPACE = DISCRIMINATOR_SIZE + 160
INSTANCES_INDEX_SPACE = instances_index_space(MAX_AGENT_INSTANCES_PER_SERVICE)
AGENT_INSTANCE_SPACE = DISCRIMINATOR_SIZE + 256
OPERATOR_AGENT_INSTANCE_SPACE = DISCRIMINATOR_SIZE + 320
OPERATOR_BOND_SPACE = DISCRIMINATOR_SIZE + 256
INSTANCE_CLAIM_SPACE = DISCRIMINATOR_SIZE + 384
MULTISIG_WHITELIST_SPACE = multisig_whitelist_space(MAX_MULTISIGS)
MULTISIG_BASE_SPACE = DISCRIMINATOR_SIZE + 128
