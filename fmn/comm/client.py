"""Client side of the datagram protocol."""
import socket

from loguru import logger

from ..errors import TransportError
from .messages import (
    MAX_DATAGRAM_SIZE,
    AddRequest,
    ListRequest,
    RemoveRequest,
    Response,
    decode_response,
    encode_request,
)

logger = logger.bind(module="comm.client")


def send_request(
    request: AddRequest | RemoveRequest | ListRequest,
    host: str,
    port: int,
    timeout: float = 3.0,
) -> Response:
    """Send one request and wait for its reply.

    There is no retry: a lost datagram in either direction surfaces as a
    timeout.

    Args:
        request: Request to send
        host: Daemon host
        port: Daemon UDP port
        timeout: Seconds to wait for the reply

    Returns:
        The daemon's Response
    """
    payload = encode_request(request)
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.settimeout(timeout)
        try:
            sock.connect((host, port))
            sock.send(payload)
            data = sock.recv(MAX_DATAGRAM_SIZE)
        except socket.timeout as e:
            raise TransportError(f"no reply from fmn-daemon at {host}:{port} within {timeout}s") from e
        except OSError as e:
            raise TransportError(f"fail to reach fmn-daemon at {host}:{port}: {e}") from e

    logger.debug(f"Received {len(data)} bytes from {host}:{port}")
    return decode_response(data)
