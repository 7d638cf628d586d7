"""Application-wide configuration constants."""

# --- Identity ---
SERVER_NAME = "Local Game"  # name advertised to joining peers

# --- Control API ---
API_HOST = "0.0.0.0"
API_PORT = 8765

# --- Session transport ---
SESSION_HOST = "0.0.0.0"
SESSION_PORT = 7777  # TCP, advertised by discovery

# --- Discovery ---
DISCOVERY_PORT = 47777  # UDP
DISCOVERY_REQUEST = b"DISCOVER_LAN_LOBBY_SERVER"
DISCOVERY_ATTEMPTS = 3
DISCOVERY_INTERVAL = 1.0  # seconds between request broadcasts

# --- Chat ---
MAX_MESSAGES = 25  # messages kept visible per peer
MAX_MESSAGE_LENGTH = 500

# --- Dispatch ---
DISPATCH_INTERVAL = 0.05  # seconds between queue drains
