from solders.pubkey import Pubkey

# ============================================
# PROGRAM IDS
# ============================================
RAYDIUM_CPMM_PROGRAM = Pubkey.from_string("CPMMoo8L3F4NbTegBCKVNunggL7H1ZpdTHKxQB5qKP1C")

# ============================================
# QUOTE LEGS
# ============================================
WSOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"

# Pools pairing two of these are not trade targets
DEFAULT_QUOTE_MINTS = frozenset({WSOL_MINT, USDC_MINT, USDT_MINT})

# ============================================
# APIS
# ============================================
RAYDIUM_API = "https://api-v3.raydium.io"
RAYDIUM_POOL_LIST_PATH = "/pools/info/list"
JUPITER_QUOTE_API = "https://quote-api.jup.ag/v6/quote"
JUPITER_SWAP_API = "https://quote-api.jup.ag/v6/swap"
BIRDEYE_API_BASE = "https://public-api.birdeye.so/defi"

# SPL mint account layout (82 bytes)
MINT_ACCOUNT_SIZE = 82
