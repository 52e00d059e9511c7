"""Command listener: applies client requests to the scheduler.

``CommandHandler`` turns one request datagram into one reply datagram and
knows nothing about sockets. ``CommandListener`` owns the UDP endpoint and
feeds datagrams to the handler one at a time.
"""
import asyncio
import socket

from loguru import logger

from ..errors import (
    NotFoundError,
    PersistenceError,
    ReminderError,
    TransportError,
    ValidationError,
)
from ..scheduler.service import SchedulerService
from .messages import (
    MAX_DATAGRAM_SIZE,
    AddRequest,
    ListRequest,
    RemoveRequest,
    Response,
    decode_request,
    encode_response,
)

logger = logger.bind(module="comm.listener")


class CommandHandler:
    """Executes Add / Remove / List against the scheduler service."""

    def __init__(self, service: SchedulerService):
        self.service = service

    async def handle(self, request: AddRequest | RemoveRequest | ListRequest) -> Response:
        """Apply one decoded request.

        Raises:
            ValidationError: Add with an unparseable schedule or empty message
            NotFoundError: Remove of an unknown id
            PersistenceError: The store could not be written
        """
        if isinstance(request, AddRequest):
            task = await self.service.add_task(request.to_create())
            return Response.success(task=task)
        elif isinstance(request, RemoveRequest):
            task = await self.service.remove_task(request.task_id)
            return Response.success(task=task)
        elif isinstance(request, ListRequest):
            return Response.success(tasks=await self.service.list_tasks())
        raise TransportError(f"unsupported request: {request!r}")

    async def handle_datagram(self, data: bytes) -> bytes:
        """Decode, apply and encode; never raises."""
        try:
            request = decode_request(data)
            response = await self.handle(request)
        except TransportError as e:
            logger.warning(f"Rejected datagram: {e}")
            response = Response.failure(str(e))
        except ValidationError as e:
            logger.info(f"Rejected invalid request: {e}")
            response = Response.failure(f"invalid request: {e}")
        except NotFoundError as e:
            logger.info(f"Remove ignored: {e}")
            response = Response.failure(str(e))
        except PersistenceError as e:
            logger.error(f"Request not applied: {e}")
            response = Response.failure(f"could not save tasks: {e}")
        except ReminderError as e:
            logger.warning(f"Request failed: {e}")
            response = Response.failure(str(e))
        except Exception as e:
            logger.exception("Unexpected error while handling request")
            response = Response.failure(f"internal error: {e}")

        payload = encode_response(response)
        if len(payload) > MAX_DATAGRAM_SIZE:
            logger.warning(f"Reply of {len(payload)} bytes does not fit in a datagram")
            payload = encode_response(
                Response.failure("reply too large for a single datagram; remove some tasks")
            )
        return payload


class _ListenerProtocol(asyncio.DatagramProtocol):
    """Queues incoming datagrams for the consumer task."""

    def __init__(self, queue: asyncio.Queue):
        self.queue = queue

    def datagram_received(self, data: bytes, addr) -> None:
        try:
            self.queue.put_nowait((data, addr))
        except asyncio.QueueFull:
            logger.warning(f"Command queue full, dropping datagram from {addr}")

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"UDP error: {exc}")


class CommandListener:
    """UDP endpoint serving the client protocol."""

    def __init__(
        self,
        handler: CommandHandler,
        host: str,
        port: int,
        queue_size: int = 128,
    ):
        """
        Args:
            handler: Request handler
            host: Interface to bind
            port: UDP port to bind (0 picks a free one)
            queue_size: Datagrams buffered while one is being handled
        """
        self.handler = handler
        self.host = host
        self.port = port
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._transport: asyncio.DatagramTransport | None = None
        self._consumer: asyncio.Task | None = None

    @property
    def address(self) -> tuple[str, int] | None:
        """Bound (host, port), once started."""
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")[:2]

    async def start(self) -> None:
        """Bind the socket; raises OSError if the address is unavailable."""
        loop = asyncio.get_running_loop()
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _ListenerProtocol(self._queue),
            local_addr=(self.host, self.port),
            family=socket.AF_INET,
        )
        self._consumer = asyncio.create_task(self._consume(), name="fmn-listener")
        host, port = self.address
        logger.info(f"Listening for commands on udp://{host}:{port}")

    async def stop(self) -> None:
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    async def _consume(self) -> None:
        while True:
            data, addr = await self._queue.get()
            try:
                reply = await self.handler.handle_datagram(data)
                if self._transport is not None:
                    self._transport.sendto(reply, addr)
            except Exception:
                logger.exception(f"Failed to answer {addr}")
            finally:
                self._queue.task_done()
