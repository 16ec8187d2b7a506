"""
wallet_link/authenticator.py

One-shot loopback listener that receives a wallet proof from the browser.

Flow per call of WalletAuthenticator.listen_for_wallet_response():
  1) pick a free loopback port and bind it
  2) serve the callback app (callback.py) on it with uvicorn
  3) hand the port to the caller (who opens authURL?port=<port>)
  4) answer any number of CORS preflights
  5) the first POST resolves the session: origin check, body parse,
     optional Ed25519 verification
  6) shut the server down and release the port, whatever happened

Security notes:
- The Origin check is an extra layer for requests that bypass CORS (curl,
  scripts). A non-browser client can forge the header, so it is weak.
  There is no nonce tying the browser page to this session.
- A signed response only proves control of the key that signed `message`;
  the caller decides what `message` must contain.
"""

import asyncio
import inspect
import logging
import socket
import threading
from typing import Any, Callable, Optional, Tuple, Type

import uvicorn
from pydantic import BaseModel, ValidationError
from starlette.datastructures import Headers

from .audit import AuditLog, build_event
from .callback import build_callback_app
from .config import settings
from .errors import BindFailure
from .models import VerifiedWalletResponse, WalletResponse, response_model_for
from .ports import allocate_free_port, bind_listener_socket
from .session import CallbackSession, SessionOutcome, SessionState

_log = logging.getLogger(__name__)

# sentinel: "use the authenticator's configured timeout"
_DEFAULT = object()

_STARTUP_POLL_SECONDS = 0.01

PortHandler = Callable[[int], Any]


def _report_late_handler_error(task: asyncio.Future) -> None:
    """Log a port handler failure that happened after the session resolved."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _log.warning("Port handler failed after the wallet response: %r", exc)


def validate_origin(headers: Headers, expected_origin: str) -> bool:
    """
    True only if the first Origin header equals `expected_origin` exactly.

    No normalization: scheme, host casing and trailing slash all matter.
    Missing or empty header fails closed.
    """
    origins = headers.getlist("origin")
    if not origins:
        return False
    origin = origins[0]
    if not origin:
        return False
    return origin == expected_origin


def parse_body(body: bytes, model: Type[BaseModel]) -> Optional[WalletResponse]:
    """Decode a UTF-8 JSON body into `model`; None if it does not fit."""
    try:
        text = body.decode("utf-8")
        return model.model_validate_json(text)
    except (UnicodeDecodeError, ValidationError):
        return None


class WalletAuthenticator:
    """
    Listens on a loopback port for a wallet response from the authenticator
    web app. One session at a time per instance.
    """

    def __init__(
        self,
        use_logging: Optional[bool] = None,
        auth_url: Optional[str] = None,
        *,
        verify_signatures: Optional[bool] = None,
        require_verified: Optional[bool] = None,
        timeout: Any = _DEFAULT,
        preflight_max_age_ms: Optional[int] = None,
        host: Optional[str] = None,
        port_allocator: Callable[[str], int] = allocate_free_port,
        audit: Optional[AuditLog] = None,
    ):
        self.use_logging = settings.USE_LOGGING if use_logging is None else use_logging
        self.auth_url = settings.AUTH_URL if auth_url is None else auth_url
        self.verify_signatures = (
            settings.VERIFY_SIGNATURES if verify_signatures is None else verify_signatures
        )
        self.require_verified = (
            settings.REQUIRE_VERIFIED if require_verified is None else require_verified
        )
        self.timeout = settings.session_timeout if timeout is _DEFAULT else timeout
        self.preflight_max_age_ms = (
            settings.PREFLIGHT_MAX_AGE_MS if preflight_max_age_ms is None else preflight_max_age_ms
        )
        self.host = settings.LISTEN_HOST if host is None else host
        self.port_allocator = port_allocator

        if audit is None and settings.AUDIT_ENABLED:
            audit = AuditLog(settings.AUDIT_DIR)
        self.audit = audit

        self.response_model = response_model_for(self.verify_signatures)
        self.last_outcome: Optional[SessionOutcome] = None

        # Guards Idle -> Listening; held for the whole session.
        self._lock = threading.Lock()
        self._session: Optional[CallbackSession] = None

    # -------------------------------------------------------------------------
    # Public
    # -------------------------------------------------------------------------
    @property
    def is_listening(self) -> bool:
        session = self._session
        return session is not None and session.is_listening

    @property
    def port(self) -> Optional[int]:
        session = self._session
        return session.port if session is not None else None

    async def listen_for_wallet_response(
        self,
        port_handler: Optional[PortHandler] = None,
        *,
        timeout: Any = _DEFAULT,
    ) -> Optional[WalletResponse]:
        """
        Listen for one wallet response.

        Args:
            port_handler: called with the port once the server accepts
                requests. If it returns an awaitable, that is run as a task
                alongside the listener. Its errors abort the session only
                until the response arrives; later ones are logged, and the
                call does not wait for the task to finish.
            timeout: seconds to wait for the POST; None waits forever.
                Defaults to the instance timeout.

        Returns:
            The wallet response, or None if it was invalid, timed out, or
            this instance is already listening.

        Raises:
            BindFailure: the loopback port could not be bound.
        """
        if not self._lock.acquire(blocking=False):
            self._debug("Already listening on port %s; ignoring new request", self.port)
            return None

        try:
            return await self._run_session(
                port_handler,
                self.timeout if timeout is _DEFAULT else timeout,
            )
        finally:
            self._session = None
            self._lock.release()

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------
    async def _run_session(
        self,
        port_handler: Optional[PortHandler],
        timeout: Optional[float],
    ) -> Optional[WalletResponse]:
        loop = asyncio.get_running_loop()

        port = 0
        try:
            port = self.port_allocator(self.host)
            sock = bind_listener_socket(self.host, port)
        except OSError as exc:
            self._debug("Could not bind %s:%s: %s", self.host, port, exc)
            raise BindFailure(self.host, port, str(exc)) from exc

        session = CallbackSession(port=port, result=loop.create_future())
        self._session = session

        server = uvicorn.Server(
            uvicorn.Config(
                build_callback_app(
                    session,
                    auth_url=self.auth_url,
                    preflight_max_age_ms=self.preflight_max_age_ms,
                    evaluate=self._evaluate,
                    debug=self._debug,
                ),
                lifespan="off",
                log_config=None,
                access_log=self.use_logging,
            )
        )
        serve_task = loop.create_task(server.serve(sockets=[sock]))
        handler_task: Optional[asyncio.Future] = None
        succeeded = False

        try:
            await self._wait_until_serving(server, serve_task, port)
            session.state = SessionState.LISTENING
            self._debug("Listening for response on port %s", port)

            if port_handler is not None:
                pending = port_handler(port)
                if inspect.isawaitable(pending):
                    handler_task = asyncio.ensure_future(pending)

            result = await self._wait_for_result(session, serve_task, handler_task, timeout)
            succeeded = True
        finally:
            await self._shutdown(server, serve_task, sock)
            if session.outcome is None:
                session.outcome = SessionOutcome.ABANDONED
            session.state = SessionState.RESOLVED
            self.last_outcome = session.outcome
            self._debug("Listener closed (outcome=%s)", session.outcome.value)

            if handler_task is not None and not succeeded and not handler_task.done():
                handler_task.cancel()

        self._record(session, result)

        if handler_task is not None:
            # the result stands; the handler is not awaited past this point
            handler_task.add_done_callback(_report_late_handler_error)

        return result

    async def _wait_until_serving(
        self,
        server: uvicorn.Server,
        serve_task: asyncio.Task,
        port: int,
    ) -> None:
        while not server.started:
            if serve_task.done():
                # startup failed; re-raise its error or report a bind failure
                serve_task.result()
                raise BindFailure(self.host, port, "server exited during startup")
            await asyncio.sleep(_STARTUP_POLL_SECONDS)

    async def _wait_for_result(
        self,
        session: CallbackSession,
        serve_task: asyncio.Task,
        handler_task: Optional[asyncio.Future],
        timeout: Optional[float],
    ) -> Optional[WalletResponse]:
        """
        Wait for the first POST. Preflights are answered by the server while
        we wait here; they never resolve `session.result`.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        waiters = {session.result, serve_task}
        if handler_task is not None:
            waiters.add(handler_task)

        while not session.result.done():
            remaining = None if deadline is None else max(deadline - loop.time(), 0)
            done, _ = await asyncio.wait(
                waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )

            if not done:
                self._debug("No wallet response after %ss", timeout)
                session.resolve(SessionOutcome.TIMED_OUT)
                break

            if handler_task is not None and handler_task in done:
                waiters.discard(handler_task)
                if not session.result.done():
                    # re-raises if the port handler failed before resolution
                    handler_task.result()

            if serve_task in done and not session.result.done():
                # server stopped on its own (signal); nothing will arrive
                serve_task.result()
                self._debug("Server stopped before a wallet response arrived")
                session.resolve(SessionOutcome.ABANDONED)

        return session.result.result()

    async def _shutdown(
        self,
        server: uvicorn.Server,
        serve_task: asyncio.Task,
        sock: socket.socket,
    ) -> None:
        server.should_exit = True
        try:
            if not serve_task.done():
                # graceful: in-flight responses are flushed before close
                await asyncio.shield(serve_task)
            elif not serve_task.cancelled() and serve_task.exception() is not None:
                _log.warning("Callback server failed: %s", serve_task.exception())
        finally:
            sock.close()

    # -------------------------------------------------------------------------
    # Request evaluation
    # -------------------------------------------------------------------------
    def _evaluate(self, headers: Headers, body: bytes) -> Tuple[SessionOutcome, Any]:
        """Turn the callback POST into (outcome, wallet-or-None). Never raises."""
        if not validate_origin(headers, self.auth_url):
            self._debug("Invalid request origin: %r", headers.get("origin"))
            return SessionOutcome.ORIGIN_MISMATCH, None

        wallet = parse_body(body, self.response_model)
        if wallet is None:
            self._debug("Could not parse wallet response body")
            return SessionOutcome.MALFORMED_PAYLOAD, None

        if isinstance(wallet, VerifiedWalletResponse):
            if wallet.is_verified:
                self._debug("Found verified wallet: %s", wallet.public_key_base58)
                return SessionOutcome.VERIFIED, wallet
            self._debug("Wallet signature did not verify: %s", wallet.public_key_base58)
            if self.require_verified:
                return SessionOutcome.VERIFICATION_FAILED, None
            return SessionOutcome.VERIFICATION_FAILED, wallet

        self._debug("Found wallet: %s", wallet.public_key)
        return SessionOutcome.ACCEPTED, wallet

    # -------------------------------------------------------------------------
    # Logging / audit
    # -------------------------------------------------------------------------
    def _debug(self, msg: str, *args: Any) -> None:
        if self.use_logging:
            _log.info(msg, *args)

    def _record(self, session: CallbackSession, wallet: Optional[WalletResponse]) -> None:
        if self.audit is None:
            return

        kwargs = {}
        if isinstance(wallet, VerifiedWalletResponse):
            kwargs = {
                "public_key": wallet.public_key_base58,
                "message": wallet.message,
                "signature": wallet.signature,
            }
        elif wallet is not None:
            kwargs = {"public_key": wallet.public_key}

        try:
            self.audit.append(
                build_event(
                    outcome=session.outcome.value,
                    port=session.port,
                    origin=self.auth_url,
                    preflights=session.preflights,
                    duration_s=session.age_seconds,
                    **kwargs,
                )
            )
        except OSError as exc:
            # The session result stands even if the audit disk is unavailable.
            _log.error("Failed to write wallet link audit event: %s", exc)
