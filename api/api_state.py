import asyncio, threading, time, uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
from utils.errors import TicketExpiredError, TicketNotFoundError

DEFAULT_TICKET_TTL = 60
DEFAULT_SWEEP_INTERVAL = 60


@dataclass
class Ticket:
    id: str
    kind: str
    payload: Dict[str, Any]
    expires_at: float = field(default=0.0)


class TicketStore:
    """
    One-time handoff between a prepare POST and the streaming GET that
    consumes it. Redeeming removes the ticket before the caller does any
    work, so a ticket can never start two jobs.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TICKET_TTL,
        clock: Callable[[], float] = time.monotonic,
        logger=None,
    ):
        self.ttl = ttl
        self.clock = clock
        self.logger = logger
        self._tickets: Dict[str, Ticket] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self):
        with self._lock:
            return len(self._tickets)

    def put(self, payload: Dict[str, Any], kind: str = "setup") -> str:
        ticket_id = uuid.uuid4().hex
        ticket = Ticket(
            id=ticket_id,
            kind=kind,
            payload=dict(payload),
            expires_at=self.clock() + self.ttl,
        )
        with self._lock:
            self._tickets[ticket_id] = ticket
        return ticket_id

    def redeem(self, ticket_id: Optional[str], kind: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            ticket = self._tickets.pop(ticket_id or "", None)
        if ticket is None:
            raise TicketNotFoundError("Invalid or already used ticket")
        if self.clock() >= ticket.expires_at:
            raise TicketExpiredError("Ticket expired")
        if kind is not None and ticket.kind != kind:
            raise TicketNotFoundError("Invalid or already used ticket")
        return ticket.payload

    def sweep(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [tid for tid, t in self._tickets.items() if now >= t.expires_at]
            for tid in expired:
                self._tickets.pop(tid, None)
        if expired and self.logger:
            self.logger.debug(f"Swept {len(expired)} expired ticket(s)")
        return len(expired)

    def start_sweeper(self, interval: float = DEFAULT_SWEEP_INTERVAL):
        if self._sweeper and not self._sweeper.done():
            return self._sweeper

        async def sweeper():
            while True:
                await asyncio.sleep(interval)
                self.sweep()

        self._sweeper = asyncio.create_task(sweeper())
        return self._sweeper

    async def stop_sweeper(self):
        if not self._sweeper:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None


class APIState:
    """Process-wide state shared by the request handlers."""

    def __init__(
        self,
        logger,
        session_auth,
        stream_manager,
        ticket_ttl: float = DEFAULT_TICKET_TTL,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
    ):
        self.logger = logger
        self.session_auth = session_auth
        self.streams = stream_manager
        self.sweep_interval = sweep_interval
        self.tickets = TicketStore(ttl=ticket_ttl, logger=logger)

    async def startup(self):
        self.tickets.start_sweeper(self.sweep_interval)
        self.logger.debug(f"Ticket sweeper running every {self.sweep_interval}s")

    async def shutdown(self):
        await self.tickets.stop_sweeper()
        aborted = await self.streams.shutdown()
        if aborted:
            self.logger.info(f"Aborted {aborted} running operation(s) on shutdown")
