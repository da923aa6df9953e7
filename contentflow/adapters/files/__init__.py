from .packet_repository import FilePacketRepository  # noqa: F401
