from mcp_client.transport.base import Transport
from mcp_client.transport.memory import MemoryTransport, create_memory_transport_pair
from mcp_client.transport.stdio import StdioServerParameters, StdioTransport, stdio_transport
from mcp_client.transport.stream import ByteStreamTransport, connect_tcp

__all__ = [
    "ByteStreamTransport",
    "MemoryTransport",
    "StdioServerParameters",
    "StdioTransport",
    "Transport",
    "connect_tcp",
    "create_memory_transport_pair",
    "stdio_transport",
]
