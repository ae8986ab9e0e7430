# rosterd wire constants (numeric envelope keys and message types)

PROTOCOL_VERSION = 1

# Envelope keys
K_V = 0
K_T = 1
K_ID = 2
K_TS = 3
K_SRC = 4
K_BODY = 6
K_TO = 7

# Message types
T_HELLO = 1
T_WELCOME = 2

T_ROSTER = 11

T_MSG = 20

T_ERROR = 40

# HELLO body is a query-style map; this is the identity claim key.
Q_USER_ID = "user_id"

# WELCOME body keys
B_WELCOME_HUB = 0
B_WELCOME_VER = 1
B_WELCOME_USER_ID = 2
B_WELCOME_TEXT = 3

# ROSTER body key
B_ROSTER_USER_IDS = "user_ids"

# Routing directive selecting every active session.
TO_ALL = "all"

DEFAULT_MIN_USER_ID = 1
DEFAULT_MAX_USER_ID = 10
