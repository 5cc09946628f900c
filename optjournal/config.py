"""Runtime settings read from the environment or .env.optjournal"""

import os

from dotenv import dotenv_values

CONFIG = {**dotenv_values(".env.optjournal"), **os.environ}

# HKEX board lot used when a trade doesn't carry its own multiplier
SHARES_PER_CONTRACT = int(CONFIG.get("OPTJOURNAL_SHARES_PER_CONTRACT") or 500)

# "today" for expiry sweeps is the calendar date of the listing market
MARKET_TZ = CONFIG.get("OPTJOURNAL_MARKET_TZ") or "Asia/Hong_Kong"

# seconds a fetched premium stays fresh
QUOTE_TTL = float(CONFIG.get("OPTJOURNAL_QUOTE_TTL") or 30)

STORAGE_PREFIX = CONFIG.get("OPTJOURNAL_STORAGE_PREFIX") or "./journal-"
