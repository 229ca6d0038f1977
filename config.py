"""
Central configuration for cert-merge.

Keep runtime-safe (no secrets). The relay URL can be overridden via Streamlit
secrets (`[relay] url`) or the CERT_RELAY_URL environment variable.
"""

# Name rendering defaults (points from the top-left; x = 0 triggers automatic centering)
DEFAULT_NAME_X = 0
DEFAULT_NAME_Y = 290
DEFAULT_FONT_SIZE = 28
DEFAULT_FONT_NAME = "times"
DEFAULT_FONT_STYLE = "normal"
PLACEHOLDER_NAME = "N/A"

# Archive
ZIP_NAME = "certificates.zip"
ZIP_SPOOL_MAX_BYTES = 25 * 1024 * 1024  # spill ZIP to disk after ~25MB

# Delivery (relay throughput limits)
DEFAULT_RELAY_URL = "http://localhost:3001/send-certificate"
RELAY_URL_ENV = "CERT_RELAY_URL"
RELAY_TIMEOUT_S = 60
BATCH_SIZE = 5
MAX_ATTEMPTS = 3
RETRY_DELAY_S = 2.0
BATCH_COOLDOWN_S = 1.0

# UI
PREVIEW_ROWS = 3
LOG_HEIGHT_PX = 300
