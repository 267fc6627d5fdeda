from __future__ import annotations
from typing import Dict, Optional

import structlog

from arenalink.client.resolver import RoundInfo
from arenalink.protocol.constants import PROTO_VER

logger = structlog.get_logger(__name__)


def build_roundentry_app(registry: Optional[Dict[str, RoundInfo]] = None):
    """Local stand-in for the round-entry API: authtoken -> connection info."""
    from fastapi import FastAPI
    from fastapi.responses import JSONResponse

    app = FastAPI(title="arenalink round entry", version=PROTO_VER)
    app.state.registry = registry if registry is not None else {}

    @app.get("/v1/roundentry/connectinfo/{token}", response_model=RoundInfo)
    def connectinfo(token: str):
        info = app.state.registry.get(token)
        if info is None:
            logger.warning("connectinfo_unknown_token")
            return JSONResponse(status_code=404, content={"error": "invalid authtoken"})
        logger.info("connectinfo_served", port=info.port)
        return info

    return app
