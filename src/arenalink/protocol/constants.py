from __future__ import annotations

PROTO_VER = "1.0"

DEFAULT_RESOLVER_URL = "https://api.vikebot.com"
CONNECTINFO_PATH = "/v1/roundentry/connectinfo/{token}"

# Handshake packet types
PT_LOGIN = "login"
PT_CLIENTHELLO = "clienthello"
PT_SERVERHELLO = "serverhello"
PT_INITIALPC = "initialpc"
PT_AGREECONN = "agreeconn"

# Command packet types
PT_ROTATE = "rotate"
PT_MOVE = "move"
PT_ATTACK = "attack"
PT_RADAR = "radar"
PT_WATCH = "watch"
PT_SCOUT = "scout"
PT_DEFEND = "defend"
PT_UNDEFEND = "undefend"
PT_HEALTH = "health"

# Error-carrying response types the server uses to reject a request
REJECTION_TYPES = {"unknown", "forbidden"}

CLIENTHELLO_PREFIX = "clienthello:"
SERVERHELLO_PREFIX = "serverhello:"

ANGLE_LEFT = "left"
ANGLE_RIGHT = "right"
ANGLES = {ANGLE_LEFT, ANGLE_RIGHT}

DIRECTION_NORTH = "north"
DIRECTION_EAST = "east"
DIRECTION_SOUTH = "south"
DIRECTION_WEST = "west"
DIRECTIONS = {DIRECTION_NORTH, DIRECTION_EAST, DIRECTION_SOUTH, DIRECTION_WEST}

KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16
CHALLENGE_BITS = 64

PC_MODULUS = 2 ** 32

FRAME_DELIMITER = b"\n"
MAX_FRAME_BYTES = 256 * 1024
MAX_JSON_DEPTH = 10
MAX_JSON_KEYS = 100
MAX_B64_LENGTH = 2 * MAX_FRAME_BYTES

DEFAULT_IO_TIMEOUT_S = 30.0
DEFAULT_RESOLVER_TIMEOUT_S = 10.0
