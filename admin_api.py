"""
Admin API — Small JSON HTTP surface over the tracker's administrative calls.
Uses aiohttp.web (already a dependency), port 8080 by default.
"""

from __future__ import annotations
import json
from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, TYPE_CHECKING
from aiohttp import web
from market.errors import AnalysisError
import logging

if TYPE_CHECKING:
    from main import Tracker

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and datetime types."""
    def default(self, o):
        if isinstance(o, Decimal):
            return float(o)
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        return super().default(o)


def json_response(data, status=200):
    return web.Response(
        text=json.dumps(data, cls=DecimalEncoder),
        content_type="application/json",
        status=status,
    )


class AdminAPI:
    """Web server for the administrative calls."""

    def __init__(self, tracker: "Tracker", host: str = "0.0.0.0", port: int = 8080):
        self.tracker = tracker
        self.host = host
        self.port = port
        self.app = web.Application()
        self._runner: Optional[web.AppRunner] = None
        self._setup_routes()

    def _setup_routes(self):
        self.app.router.add_get("/api/status", self._api_status)
        self.app.router.add_get("/api/coins", self._api_coins)
        self.app.router.add_post("/api/coins/{coin_id}", self._api_add_coin)
        self.app.router.add_delete("/api/coins/{coin_id}", self._api_remove_coin)
        self.app.router.add_get("/api/prices/latest", self._api_last_prices)
        self.app.router.add_post("/api/auto-update/start", self._api_start)
        self.app.router.add_post("/api/auto-update/stop", self._api_stop)
        self.app.router.add_post("/api/analysis", self._api_analysis)
        self.app.router.add_post("/api/collect", self._api_collect)
        self.app.router.add_post("/api/history", self._api_history)

    async def start(self):
        self._runner = web.AppRunner(self.app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"[API] Running on http://{self.host}:{self.port}")

    async def stop(self):
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    # ─── Routes ───

    async def _api_status(self, request: web.Request) -> web.Response:
        report = self.tracker.analysis.last_report
        return json_response({
            "auto_update": self.tracker.auto_update_status(),
            "tracked_coins": len(self.tracker.tracked_coins()),
            "stored_records": self.tracker.db.count(),
            "last_analysis": asdict(report) if report else None,
        })

    async def _api_coins(self, request: web.Request) -> web.Response:
        return json_response({"coins": self.tracker.tracked_coins()})

    async def _api_add_coin(self, request: web.Request) -> web.Response:
        added = self.tracker.add_coin(request.match_info["coin_id"])
        return json_response({"added": added, "coins": self.tracker.tracked_coins()})

    async def _api_remove_coin(self, request: web.Request) -> web.Response:
        removed = self.tracker.remove_coin(request.match_info["coin_id"])
        return json_response({"removed": removed, "coins": self.tracker.tracked_coins()})

    async def _api_last_prices(self, request: web.Request) -> web.Response:
        prices = []
        for coin_id, record in self.tracker.last_prices().items():
            if record is None:
                continue
            prices.append({
                "coin_id": coin_id,
                "symbol": record.symbol,
                "price": record.price,
                "timestamp": record.timestamp,
            })
        return json_response({"prices": prices})

    async def _api_start(self, request: web.Request) -> web.Response:
        await self.tracker.start_auto_update()
        return json_response({"auto_update": self.tracker.auto_update_status()})

    async def _api_stop(self, request: web.Request) -> web.Response:
        await self.tracker.stop_auto_update()
        return json_response({"auto_update": self.tracker.auto_update_status()})

    async def _api_analysis(self, request: web.Request) -> web.Response:
        try:
            report = await self.tracker.run_analysis()
        except AnalysisError as e:
            logger.error(f"[API] Analysis failed: {e}")
            return json_response({"error": str(e)}, status=500)
        return json_response(asdict(report))

    async def _api_collect(self, request: web.Request) -> web.Response:
        stored = await self.tracker.collect_now()
        return json_response({"stored": stored})

    async def _api_history(self, request: web.Request) -> web.Response:
        """?days=N forces a backfill; without it the load runs only if data is sparse."""
        days: Optional[int] = None
        if "days" in request.query:
            try:
                days = int(request.query["days"])
            except ValueError:
                return json_response({"error": "days must be an integer"}, status=400)
        try:
            stored = await self.tracker.load_history(days)
        except ValueError as e:
            return json_response({"error": str(e)}, status=400)
        return json_response({"stored": stored})
