"""Protocol layer: response framing, command serialization, decoders and request tracking."""

from .framing import DataFrame, ErrorFrame, Frame, ResponseFramer, VersionFrame, parse_response
from .commands import Command, serialize_command, serialize_command_list
from .parser import parse_changed, parse_key_value, parse_records
