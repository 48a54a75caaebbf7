"""Runner constants and defaults."""

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
SYSTEM_PROGRAM_LABEL = "System Program"
SYSTEM_PROGRAM_ACCOUNT = "system_program"

# Account names that always resolve to the fee payer.
AUTHORITY_ROLES = {"user", "authority", "payer"}
# Seed tokens that resolve to the fee payer's public key.
PAYER_SEED_TOKENS = {"authority.key()", "user.key()", "payer.key()"}

# Templates allowed to run against the local validator.
SUPPORTED_TEMPLATES = frozenset({"hello-solana", "pda-vault", "account-init"})

DEFAULT_HTTP_PORT = 3002
DEFAULT_VALIDATOR_PORT = 8899
DEFAULT_MAX_EXECUTION_TIME_MS = 30_000

VALIDATOR_STARTUP_TIMEOUT = 10.0
VALIDATOR_STOP_GRACE = 1.0
VALIDATOR_SETTLE_DELAY = 1.5
VALIDATOR_READY_MARKERS = ("validator ready", "JSON RPC URL")

LAMPORTS_PER_SOL = 1_000_000_000
PAYER_AIRDROP_LAMPORTS = 2 * LAMPORTS_PER_SOL

COMMITMENT = "confirmed"

# Pinned build toolchain written into every generated Anchor.toml.
ANCHOR_VERSION = "0.29.0"
SOLANA_VERSION = "1.18.26"

CUSTOM_TRANSACTION_SCENARIO = "custom-transaction"

DISCRIMINATOR_SIZE = 8

# Display labels for generated accounts whose name reads poorly as-is.
ACCOUNT_LABELS = {"my_account": "My Account"}
