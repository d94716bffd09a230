"""Identifier widths, binary arguments, run modes and live-event names."""

# ── Identifier Layout ────────────────────────────────────────────────────────

# IMSI = country code (MCC) + network code (MNC) + subscriber suffix (MSIN)
COUNTRY_CODE_LENGTH = 3
NETWORK_CODE_LENGTH = 2
IDENTIFIER_LENGTH = 10
IMSI_LENGTH = COUNTRY_CODE_LENGTH + NETWORK_CODE_LENGTH + IDENTIFIER_LENGTH

# ── Binary Invocation ────────────────────────────────────────────────────────

SINGLE_UE_ARGS = ["ue"]
MULTI_UE_COMMAND = "multi-ue"

# ── Run Modes ────────────────────────────────────────────────────────────────

RUN_MODE_IMMEDIATE = "immediate-batch"
RUN_MODE_SCHEDULED = "scheduled-batch"

# ── Run States ───────────────────────────────────────────────────────────────

STATE_IDLE = "idle"
STATE_RUNNING = "running"
STATE_STOPPING = "stopping"

# ── Session Failure Kinds ────────────────────────────────────────────────────

FAILURE_LAUNCH = "launch_error"
FAILURE_TIMEOUT = "timeout"
FAILURE_EXIT = "exit_code"

# ── Live Channel Events ──────────────────────────────────────────────────────

EVENT_PROCESS_LOG = "packetrusher-log"
EVENT_SESSION_LOG = "session-log"
EVENT_STATUS = "status"
EVENT_SNAPSHOT = "snapshot"

LEVEL_INFO = "info"
LEVEL_SUCCESS = "success"
LEVEL_WARNING = "warning"
LEVEL_ERROR = "error"
