"""
SocialVPN Management API Server

FastAPI server hosting the trust engine and its management surface.

Endpoints:
- POST /api - Management request (url-encoded form, see socialvpn.management)
- GET /state - Current state snapshot
- GET /stats - Engine statistics
- GET /health - Health check
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import Response
from loguru import logger

from socialvpn.config import SocialConfig, load_config
from socialvpn.management import parse_request
from socialvpn.node import SocialNode
from socialvpn.p2p.connectivity import AddressMapper
from socialvpn.p2p.dht.store import InMemoryDht


# =============================================================================
# Global State
# =============================================================================

class AppState:
    """Application state."""

    def __init__(self):
        self.config: Optional[SocialConfig] = None
        self.node: Optional[SocialNode] = None

    async def initialize(self, config: SocialConfig):
        """Build and start the engine."""
        self.config = config
        self.node = SocialNode(
            config=config,
            store=InMemoryDht(),
            connectivity=AddressMapper(config.network)
        )
        await self.node.start()

        logger.info("✅ SocialVPN engine initialized")
        logger.info("   Local user: {} ({})", self.node.local_user.uid, self.node.local_user.alias)
        logger.info("   Certificates: {}", config.cert_dir)
        logger.info("   Backends: {}", ", ".join(self.node.aggregator.backend_names()) or "none")

    async def shutdown(self):
        """Stop the engine."""
        if self.node is not None:
            await self.node.stop()
        logger.info("✅ SocialVPN API server shutdown complete")


def get_node(app: FastAPI) -> SocialNode:
    node = app.state.app_state.node
    if node is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Engine not initialized"
        )
    return node


# =============================================================================
# FastAPI Application
# =============================================================================

def create_app(config: Optional[SocialConfig] = None) -> FastAPI:
    """
    Create the management application.

    Args:
        config: Engine configuration (loaded from SVPN_CONFIG / environment
            at startup when omitted)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan."""
        app_config = config or load_config(Path(os.getenv("SVPN_CONFIG", "social.config.json")))
        await app.state.app_state.initialize(app_config)

        yield

        await app.state.app_state.shutdown()

    app = FastAPI(
        title="SocialVPN Management API",
        description="Trust and discovery engine for the SocialVPN overlay",
        version="0.3.0",
        lifespan=lifespan,
    )
    app.state.app_state = AppState()

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "socialvpn",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "engine_initialized": app.state.app_state.node is not None,
        }

    @app.post("/api")
    async def management_request(request: Request):
        """
        Handle a management request.

        The body is a url-encoded form; the response is always the state
        snapshot after the request was applied.
        """
        node = get_node(app)
        body = (await request.body()).decode("utf-8", errors="replace")
        parsed = parse_request(body)
        logger.info("Management request: m={}", parsed.get("m"))
        snapshot = await node.process_request(parsed)
        return Response(content=snapshot, media_type="application/json")

    @app.get("/state")
    async def get_state():
        """Current state snapshot."""
        return get_node(app).get_state().to_dict()

    @app.get("/stats")
    async def get_stats():
        """Engine statistics."""
        return get_node(app).get_stats()

    return app


app = create_app()


def main():
    """Run API server."""
    # Configure logging
    logger.add(
        "logs/socialvpn_{time}.log",
        rotation="1 day",
        retention="30 days",
        level="INFO"
    )

    config = load_config(Path(os.getenv("SVPN_CONFIG", "social.config.json")))

    logger.info("🚀 Starting SocialVPN management server on {}:{}", config.http_host, config.http_port)
    logger.info("   Certificates: {}", config.cert_dir)
    logger.info("   State: {}", config.state_path)

    uvicorn.run(
        create_app(config),
        host=config.http_host,
        port=config.http_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
