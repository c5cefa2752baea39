import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from auth.api import router as auth_router
from baccarat.api import router as baccarat_router
from baccarat.service import RoundScheduler, Timings
from baccarat.sql import RoundArchive, ensure_schema
from blackjack.api import router as blackjack_router
from blackjack.dealer import DealerPacing
from blackjack.service import BlackjackService
from realtime.server import BACCARAT_NS, BLACKJACK_NS, SocketEmitter, bind, sio
from util.config import ALLOWED_ORIGINS, APP_NAME, DATABASE_URL, LOG_LEVEL, SESSION_SWEEP_SECONDS
from util.db import ensure_ledger_schema
from util.ledger import Ledger, PostgresLedger

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


async def sweep_loop(app: FastAPI):
    # 定期清理閒置 21 點 session，並補寫未入帳的派彩
    while True:
        await asyncio.sleep(SESSION_SWEEP_SECONDS)
        try:
            await app.state.blackjack.cleanup()
            await app.state.baccarat.credits.flush()
        except Exception:
            logger.exception("sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.init_db:
        await asyncio.to_thread(ensure_ledger_schema)
        await asyncio.to_thread(ensure_schema)
    sweeper = asyncio.create_task(sweep_loop(app))
    try:
        yield
    finally:
        sweeper.cancel()
        await app.state.baccarat.shutdown()


def create_app(ledger: Optional[Ledger] = None, archive=None,
               timings: Optional[Timings] = None, pacing: Optional[DealerPacing] = None,
               init_db: Optional[bool] = None) -> FastAPI:
    if ledger is None:
        ledger = PostgresLedger()
        if archive is None and DATABASE_URL:
            archive = RoundArchive()
    if init_db is None:
        init_db = isinstance(ledger, PostgresLedger) and bool(DATABASE_URL)

    app = FastAPI(title=APP_NAME, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.init_db = init_db
    app.state.baccarat = RoundScheduler(ledger, SocketEmitter(BACCARAT_NS), timings=timings, archive=archive)
    app.state.blackjack = BlackjackService(ledger, SocketEmitter(BLACKJACK_NS), pacing=pacing)
    bind(app.state.baccarat, app.state.blackjack)

    app.include_router(auth_router, prefix="/auth", tags=["auth"])
    app.include_router(baccarat_router, prefix="/baccarat", tags=["baccarat"])
    app.include_router(blackjack_router, prefix="/blackjack", tags=["blackjack"])

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    return app


app = create_app()
asgi = socketio.ASGIApp(sio, other_asgi_app=app)
