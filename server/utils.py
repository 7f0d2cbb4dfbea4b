"""
Server Utilities
Helper functions for SSE encoding and network info.
"""

import json
import logging
import socket

logger = logging.getLogger(__name__)


def encode_sse(data: dict) -> str:
    """
    Encode data as Server-Sent Event (SSE) format.

    Format: data: {json}\n\n

    Args:
        data: Dictionary to encode as JSON

    Returns:
        SSE-formatted string ready to send to client
    """
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


def get_local_ip() -> str:
    """Best-effort LAN address, used only for the startup banner."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # connect() on UDP does not send anything
        s.connect(("8.8.8.8", 80))
        return s.getsockname()[0]
    except OSError as e:
        logger.warning(f"Failed to resolve local IP: {e}")
        return "127.0.0.1"
    finally:
        s.close()
