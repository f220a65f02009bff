from enum import Enum


class PeerStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ControlMode(str, Enum):
    LOCAL = "local"
    SSH = "ssh"


class CommandKind(str, Enum):
    DUMP = "dump"
    REMOVE_PEER = "remove_peer"
    SET_PEER = "set_peer"
    READ_CONFIG = "read_config"
    WRITE_CONFIG = "write_config"


class FailureStep(str, Enum):
    LIVE = "live"
    DURABLE = "durable"
