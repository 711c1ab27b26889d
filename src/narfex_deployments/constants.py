"""Configuration constants for narfex-deployments library."""

# Built-in network table, one entry per network the exchanger has been
# deployed to. Gas prices are in wei; None means "ask the node".
# RPC endpoints can be overridden through the listed environment variable.
NETWORK_CONFIG = {
    "localhost": {
        "chain_id": 31337,
        "rpc_url": "http://127.0.0.1:8545",
        "gas_price": None,
        "default_rpc_env": "LOCALHOST_RPC_URL",
        "block_explorer_url": None,
    },
    "eth": {
        "chain_id": 1,
        "rpc_url": "https://rpc.ankr.com/eth",
        "gas_price": 36_000_000_000,
        "default_rpc_env": "ETH_RPC_URL",
        "block_explorer_url": "https://etherscan.io",
    },
    "bsc": {
        "chain_id": 56,
        "rpc_url": "https://bsc-dataseed1.defibit.io/",
        "gas_price": 20_000_000_000,
        "default_rpc_env": "BSC_RPC_URL",
        "block_explorer_url": "https://bscscan.com",
    },
    "polygon": {
        "chain_id": 137,
        "rpc_url": "https://polygon-rpc.com",
        "gas_price": 140_000_000_000,
        "default_rpc_env": "POLYGON_RPC_URL",
        "block_explorer_url": "https://polygonscan.com",
    },
    "arbitrum": {
        "chain_id": 42161,
        "rpc_url": "https://arb1.arbitrum.io/rpc",
        "gas_price": 200_000_000,
        "default_rpc_env": "ARBITRUM_RPC_URL",
        "block_explorer_url": "https://arbiscan.io",
    },
    "mumbai": {
        "chain_id": 80001,
        "rpc_url": "https://rpc-mumbai.maticvigil.com/",
        "gas_price": 20_000_000_000,
        "default_rpc_env": "MUMBAI_RPC_URL",
        "block_explorer_url": "https://mumbai.polygonscan.com",
    },
    "test": {
        "chain_id": 97,
        "rpc_url": "https://data-seed-prebsc-1-s1.binance.org:8545/",
        "gas_price": 11_000_000_000,
        "default_rpc_env": "TEST_RPC_URL",
        "block_explorer_url": "https://testnet.bscscan.com",
    },
}

# Every built-in network signs with the same deployer key
DEFAULT_CREDENTIAL = "env:DEPLOYER_PRIVATE_KEY"

# JSON-RPC error codes that signal load shedding rather than a bad request
TRANSIENT_RPC_ERROR_CODES = frozenset({-32005, 429})

# HTTP status codes worth retrying
TRANSIENT_HTTP_STATUS = frozenset({408, 425, 429, 500, 502, 503, 504})

# Node error messages meaning "the transaction you sent is already known"
ALREADY_KNOWN_MESSAGES = ("already known", "known transaction", "already imported")

RPC_TIMEOUT = 30  # seconds, per HTTP request

# Selector of Solidity's Error(string), the payload of require()/revert() reasons
ERROR_STRING_SELECTOR = "0x08c379a0"

# Marker hardhat leaves in bytecode that still needs library linking
UNLINKED_LIBRARY_MARKER = "__$"
