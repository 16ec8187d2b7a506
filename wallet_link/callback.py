# wallet_link/callback.py
#
# -----------------------------------------------------------------------------
# HTTP surface of the loopback listener
# -----------------------------------------------------------------------------
# One FastAPI app is built per session and served on 127.0.0.1:<port>/.
#
#   OPTIONS /  -> CORS preflight answer, session keeps listening
#   POST    /  -> the wallet callback; first one resolves the session
#   other      -> 405 (Starlette router), session keeps listening
#
# The browser page always gets a 200 for its POST. Whether the payload was
# accepted is reported to the native caller only, never to the page.
#
# CORS headers are written by hand instead of CORSMiddleware: the listener
# allows exactly one origin and one method, and the middleware would answer
# preflights itself without the session ever seeing them.
# -----------------------------------------------------------------------------

from typing import Any, Callable, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.responses import Response
from starlette.datastructures import Headers
from starlette.requests import ClientDisconnect

from .session import CallbackSession, SessionOutcome

ALLOW_ORIGIN = "Access-Control-Allow-Origin"
ALLOW_METHODS = "Access-Control-Allow-Methods"
MAX_AGE = "Access-Control-Max-Age"

Evaluator = Callable[[Headers, bytes], Tuple[SessionOutcome, Any]]


def preflight_headers(auth_url: str, max_age_ms: int) -> dict:
    return {
        ALLOW_ORIGIN: auth_url,
        ALLOW_METHODS: "POST",
        MAX_AGE: str(max_age_ms),
    }


def acknowledgement_headers(auth_url: str) -> dict:
    return {ALLOW_ORIGIN: auth_url}


def build_callback_app(
    session: CallbackSession,
    *,
    auth_url: str,
    preflight_max_age_ms: int,
    evaluate: Evaluator,
    debug: Optional[Callable[..., None]] = None,
) -> FastAPI:
    """
    Build the per-session callback app.

    `evaluate(headers, body)` turns the POST into (outcome, wallet-or-None)
    and must not raise.
    """
    log = debug or (lambda *a: None)

    app = FastAPI(
        title="Wallet Link callback",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.options("/")
    async def preflight():
        session.preflights += 1
        log("Sent PREFLIGHT response (port %s, #%s)", session.port, session.preflights)
        return Response(
            status_code=200,
            headers=preflight_headers(auth_url, preflight_max_age_ms),
        )

    @app.post("/")
    async def wallet_callback(request: Request):
        ack = acknowledgement_headers(auth_url)

        # Claim before the first await: only one POST may ever be authoritative.
        if not session.claim():
            log("Ignoring POST on port %s: session already resolved", session.port)
            return Response(status_code=409, headers=ack)

        try:
            body = await request.body()
        except ClientDisconnect:
            session.resolve(SessionOutcome.MALFORMED_PAYLOAD)
            log("Client disconnected before sending a body")
            return Response(status_code=400, headers=ack)

        outcome, wallet = evaluate(request.headers, body)
        session.resolve(outcome, wallet)

        log("Sent POST response (outcome=%s)", outcome.value)
        return Response(status_code=200, headers=ack)

    return app
