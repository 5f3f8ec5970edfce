#!/usr/bin/env python3
"""
Script Pool Server - HTTP ingestion gateway for a DispatchPool.

Usage:
    scriptpool --port 8765 --slots 4
    python -m scriptpool.server --config ~/.scriptpool/config.yaml

API:
    POST /scripts               - Submit a script (raw request body)
    GET  /results/{request_id}  - Read a finished script's result once (?wait=seconds)
    GET  /results               - Read the latest unread result (text/plain)
    GET  /health                - Health check and slot counts
    GET  /slots                 - List all slots and their status
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from typing import Optional

from aiohttp import web

from .config import ScriptPoolSettings, ServerConfig, load_config
from .device import render_result
from .errors import ConfigError, PoolInitError, PoolNotStartedError
from .results import ResultStore
from .slots.dispatcher import Dispatcher, DispatchStatus
from .slots.pool import DispatchPool

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    DispatchStatus.ACCEPTED: 202,
    DispatchStatus.BUSY: 503,
    DispatchStatus.OUT_OF_MEMORY: 507,
    DispatchStatus.COPY_FAILURE: 400,
    DispatchStatus.TASK_SPAWN_FAILURE: 500,
}

MAX_WAIT_SECONDS = 60.0


class ScriptPoolServer:
    """
    HTTP front end for a DispatchPool.

    Handlers only call the dispatcher and the result store; dispatch itself
    never blocks on a busy slot, so it is safe to call on the event loop.
    """

    def __init__(
        self,
        pool: DispatchPool,
        dispatcher: Optional[Dispatcher] = None,
        config: Optional[ServerConfig] = None,
    ):
        self.pool = pool
        self.dispatcher = dispatcher or Dispatcher(pool)
        self.config = config or ServerConfig()

    @property
    def results(self) -> ResultStore:
        return self.dispatcher.results

    # HTTP Handlers

    async def handle_submit(self, request: web.Request) -> web.Response:
        """Handle POST /scripts."""
        body = await request.read()
        try:
            receipt = self.dispatcher.dispatch(body)
        except PoolNotStartedError as e:
            return web.json_response({"success": False, "error": str(e)}, status=503)

        status = _STATUS_CODES[receipt.status]
        if receipt.accepted:
            return web.json_response(
                {
                    "success": True,
                    "accepted": receipt.length,
                    "request_id": receipt.request_id,
                    "slot_id": receipt.slot_id,
                },
                status=status,
            )

        headers = {}
        if receipt.status == DispatchStatus.BUSY:
            headers["Retry-After"] = str(self.config.retry_after)
        return web.json_response(
            {"success": False, "status": receipt.status.value, "error": receipt.detail},
            status=status,
            headers=headers,
        )

    async def handle_result(self, request: web.Request) -> web.Response:
        """Handle GET /results/{request_id}."""
        request_id = request.match_info["request_id"]
        try:
            wait = float(request.query.get("wait", "0"))
        except ValueError:
            return web.json_response({"success": False, "error": "Invalid wait"}, status=400)
        wait = min(max(wait, 0.0), MAX_WAIT_SECONDS)

        if wait > 0:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.results.wait, request_id, wait)

        result = self.results.take(request_id)
        if result is None:
            return web.json_response(
                {"success": False, "error": f"No result for {request_id}"},
                status=404,
            )
        return web.json_response(result.to_dict())

    async def handle_latest(self, request: web.Request) -> web.Response:
        """Handle GET /results."""
        result = self.results.take_latest()
        text = self.pool.config.placeholder if result is None else render_result(result)
        return web.Response(text=text)

    async def handle_health(self, request: web.Request) -> web.Response:
        """Handle GET /health."""
        stats = self.pool.stats()
        return web.json_response({
            "status": "ok" if self.pool.accepting else "stopped",
            "slots": stats["total"],
            "available": stats["available"],
            "executing": stats["executing"],
            "disabled": stats["disabled"],
            "pending_results": len(self.results),
        })

    async def handle_list_slots(self, request: web.Request) -> web.Response:
        """Handle GET /slots."""
        return web.json_response({"slots": self.pool.describe()})

    async def _on_cleanup(self, app: web.Application) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.pool.teardown)

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()

        app.router.add_post("/scripts", self.handle_submit)
        app.router.add_get("/results", self.handle_latest)
        app.router.add_get("/results/{request_id}", self.handle_result)
        app.router.add_get("/health", self.handle_health)
        app.router.add_get("/slots", self.handle_list_slots)
        app.on_cleanup.append(self._on_cleanup)

        return app


def build_server(settings: ScriptPoolSettings) -> ScriptPoolServer:
    """Create and start a pool for ``settings`` and wrap it in a server."""
    pool = DispatchPool(settings.pool)
    pool.init()
    return ScriptPoolServer(pool, config=settings.server)


def main(argv=None) -> int:
    """Run the script pool server."""
    parser = argparse.ArgumentParser(description="Script Pool Server")
    parser.add_argument("--config", type=str, default=None, help="Path to config.yaml")
    parser.add_argument("--host", type=str, default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on")
    parser.add_argument("--slots", type=int, default=None, help="Number of interpreter slots")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        settings = load_config(args.config)
        if args.slots is not None:
            settings.pool = dataclasses.replace(settings.pool, num_slots=args.slots)
        if args.host is not None:
            settings.server.host = args.host
        if args.port is not None:
            settings.server.port = args.port
        server = build_server(settings)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    except PoolInitError as e:
        logger.error(f"Could not start pool: {e}")
        return 1

    logger.info(
        f"Starting Script Pool Server on {settings.server.host}:{settings.server.port} "
        f"({settings.pool.num_slots} slots)"
    )
    web.run_app(server.create_app(), host=settings.server.host, port=settings.server.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
