import os
from dotenv import load_dotenv

# Load .env file only in development environment
if os.getenv("ENVIRONMENT", "development") == "development":
    load_dotenv()  # Load environment variables from .env file

# Database Configuration
DB_HOST = os.getenv("DB_HOST")
DB_NAME = os.getenv("DB_NAME")
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_PORT = os.getenv("DB_PORT")

# Full SQLAlchemy URL, takes precedence over the DB_* settings (e.g. sqlite:///yields.db)
DATABASE_URL = os.getenv("DATABASE_URL")

# Yields feed
DEFILLAMA_POOLS_URL = os.getenv("DEFILLAMA_POOLS_URL", "https://yields.llama.fi/pools")
DEFILLAMA_POOL_PAGE_URL = os.getenv("DEFILLAMA_POOL_PAGE_URL", "https://defillama.com/yields/pool/")
REQUEST_TIMEOUT = int(os.getenv("REQUEST_TIMEOUT", "60"))

# Rolling statistics
DAYS_PER_YEAR = int(os.getenv("DAYS_PER_YEAR", "365"))
# "skip" leaves the daily-return side untouched when a return is missing, "zero" counts it as r = 0
MISSING_RETURN_POLICIES = ("skip", "zero")
MISSING_RETURN_POLICY = os.getenv("MISSING_RETURN_POLICY", "skip")
if MISSING_RETURN_POLICY not in MISSING_RETURN_POLICIES:
    raise ValueError(f"MISSING_RETURN_POLICY must be one of {MISSING_RETURN_POLICIES}, got {MISSING_RETURN_POLICY!r}")

# Enrichment
STABLECOIN_SYMBOLS = [
    s.strip().upper()
    for s in os.getenv(
        "STABLECOIN_SYMBOLS",
        "USDC,USDT,DAI,FRAX,LUSD,TUSD,USDP,BUSD,GUSD,SUSD,USDE,PYUSD,CRVUSD,GHO,USDS,FDUSD,USDC.E,USDBC,DOLA,MIM",
    ).split(",")
    if s.strip()
]
OUTLIER_IQR_FACTOR = float(os.getenv("OUTLIER_IQR_FACTOR", "3.0"))
