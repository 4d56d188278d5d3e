"""PolkaPay client SDK for AssetHub-style asset transfers."""

from .accounts import AccountService
from .address import InvalidAddressError, is_valid_address, ss58_decode, ss58_encode
from .amounts import (
    ASSET_DECIMALS,
    NATIVE_DECIMALS,
    AmountCodec,
    format_fee,
    to_base_units,
    to_decimal_string,
)
from .config import ChainConfig, ConfigurationError, configure_logging, load_chain_config
from .connection import ConnectionManager, ConnectionState
from .errors import (
    ChainConnectionError,
    FeeEstimationError,
    NotInitializedError,
    PolkaPayError,
    QueryError,
    RetryExhaustedError,
    SchemaNotRegisteredError,
    SigningError,
    SubmissionError,
)
from .keyring import KeyMaterial, generate_key_material, import_from_seed_phrase, sign_data
from .models import (
    AccountSnapshot,
    AccountStatus,
    BlockInfo,
    FinalizedBlock,
    SignedTransaction,
    TransactionEvent,
    TransactionResult,
    TransactionState,
    TransferIntent,
)
from .streams import Subscription
from .transactions import TransactionService

__all__ = [
    "AccountService",
    "TransactionService",
    "ConnectionManager",
    "ConnectionState",
    "ChainConfig",
    "ConfigurationError",
    "configure_logging",
    "load_chain_config",
    "AmountCodec",
    "ASSET_DECIMALS",
    "NATIVE_DECIMALS",
    "format_fee",
    "to_base_units",
    "to_decimal_string",
    "InvalidAddressError",
    "is_valid_address",
    "ss58_decode",
    "ss58_encode",
    "KeyMaterial",
    "generate_key_material",
    "import_from_seed_phrase",
    "sign_data",
    "AccountSnapshot",
    "AccountStatus",
    "BlockInfo",
    "FinalizedBlock",
    "SignedTransaction",
    "TransactionEvent",
    "TransactionResult",
    "TransactionState",
    "TransferIntent",
    "Subscription",
    "PolkaPayError",
    "ChainConnectionError",
    "SchemaNotRegisteredError",
    "NotInitializedError",
    "QueryError",
    "FeeEstimationError",
    "SigningError",
    "SubmissionError",
    "RetryExhaustedError",
]
