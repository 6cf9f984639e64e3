"""Protocol layer: packet framing, CRC, command builders, and reply parsing."""

from .framing import OutgoingPacket, build_packet, plan_chunks
from .commands import COMMAND_CATALOG, Command, build_command
from .parser import ReplyStatus, read_reply
