from __future__ import annotations

from typing import Literal

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .controller import BotController
from .deriv import DerivAPIError
from .models import LONG


class ConfigPatch(BaseModel):
    asset_class: str | None = None
    risk_tolerance: str | None = None
    timeframe: str | None = None
    assets: list[str] | None = None
    risk_per_trade: float | None = Field(default=None, gt=0.0, le=1.0)
    confluence_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    api_provider: str | None = None
    api_token: str | None = None
    app_id: str | None = None
    trade_stake: float | None = Field(default=None, gt=0.0)


class AssetsRequest(BaseModel):
    symbols: list[str] = Field(min_length=1)


class SymbolsRequest(BaseModel):
    symbols: list[str] | None = None


class BuyRequest(BaseModel):
    symbol: str
    stake: float | None = Field(default=None, gt=0.0)
    direction: Literal["LONG", "SHORT"] = LONG


def create_app(controller: BotController) -> FastAPI:
    app = FastAPI(title="Deriv Signal Agent API", version="0.1.0")

    @app.exception_handler(ValueError)
    async def _invalid_request(_: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(DerivAPIError)
    async def _venue_error(_: Request, exc: DerivAPIError) -> JSONResponse:
        return JSONResponse(
            status_code=502,
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(ConnectionError)
    async def _transport_error(_: Request, exc: ConnectionError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.get("/healthz")
    async def healthz() -> dict:
        return {"ok": True}

    @app.get("/status")
    async def status() -> dict:
        return controller.snapshot()

    @app.get("/config")
    async def get_config() -> dict:
        return controller.bot_config.get().to_dict()

    @app.patch("/config")
    async def patch_config(payload: ConfigPatch) -> dict:
        changes = payload.model_dump(exclude_unset=True)
        if changes:
            await controller.set_config(**changes)
        return controller.bot_config.get().to_dict()

    @app.post("/config/assets")
    async def add_assets(payload: AssetsRequest) -> dict:
        updated = await controller.add_assets(payload.symbols)
        return updated.to_dict()

    @app.delete("/config/assets/{symbol}")
    async def remove_asset(symbol: str) -> dict:
        updated = await controller.remove_asset(symbol)
        return updated.to_dict()

    @app.get("/market/{symbol}")
    async def market(symbol: str) -> dict:
        body = controller.market(symbol)
        if body["last_tick"] is None:
            raise HTTPException(status_code=404, detail=f"no ticks for {symbol}")
        return body

    @app.get("/market/{symbol}/candles")
    async def market_candles(
        symbol: str,
        granularity: int | None = Query(default=None, gt=0),
        limit: int = Query(default=200, ge=1, le=1000),
    ) -> dict:
        seconds = granularity or controller.bot_config.get().granularity
        candles = controller.series.get_candles(symbol, seconds)[-limit:]
        return {
            "symbol": symbol,
            "granularity": seconds,
            "items": [c.to_dict() for c in candles],
        }

    @app.get("/signals")
    async def signals(limit: int = Query(default=50, ge=1, le=200)) -> dict:
        return {"items": [s.to_dict() for s in controller.engine.signals()[:limit]]}

    @app.get("/trades")
    async def trades() -> dict:
        return {
            "open": [t.to_dict() for t in controller.trades.open_trades()],
            "closed": [t.to_dict() for t in controller.trades.logs()],
            "total_pnl": controller.trades.total_pnl(),
            "win_rate": controller.trades.win_rate(),
            "best_pairs": controller.trades.best_pairs(),
        }

    @app.post("/engine/start")
    async def engine_start() -> dict:
        failed = await controller.start()
        return {"ok": True, "engine_status": controller.engine.status, "failed_symbols": failed}

    @app.post("/engine/stop")
    async def engine_stop() -> dict:
        controller.stop()
        return {"ok": True, "engine_status": controller.engine.status}

    @app.post("/subscriptions")
    async def subscribe(payload: SymbolsRequest) -> dict:
        failed = await controller.subscribe_symbols(payload.symbols)
        return {"ok": True, "failed_symbols": failed, "subscriptions": controller.client.subscriptions()}

    @app.delete("/subscriptions")
    async def unsubscribe() -> dict:
        await controller.unsubscribe_all()
        return {"ok": True, "subscriptions": controller.client.subscriptions()}

    @app.post("/trades/buy")
    async def buy(payload: BuyRequest) -> dict:
        contract_id = await controller.buy(payload.symbol, payload.stake, payload.direction)
        return {"ok": True, "contract_id": contract_id}

    return app

