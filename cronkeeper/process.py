"""FastAPI application exposing the keeper to an automation registry."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field

from .config import default_config_path
from .errors import ActionNoLongerValid, InvalidParam, KeeperError
from .service import KeeperService

logger = logging.getLogger(__name__)


class CheckIn(BaseModel):
    """Payload of a check call; ``checkData`` is hex and currently unused."""

    check_data: str = Field(default="0x", alias="checkData")


class PerformIn(BaseModel):
    perform_data: str = Field(..., alias="performData", min_length=1)


def _hex_to_bytes(value: str, field: str) -> bytes:
    text = value[2:] if value.startswith("0x") else value
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"{field} must be hex encoded") from exc


def create_app(
    *,
    config_path: str | Path | None = None,
    service: Optional[KeeperService] = None,
    run_loop: bool = False,
) -> FastAPI:
    """Instantiate the FastAPI application around a keeper service."""

    if service is None:
        path = Path(config_path) if config_path is not None else default_config_path()
        logger.info("Loading keeper configuration from %s", path)
        service = KeeperService.from_config_path(path)
    keeper_service = service
    app = FastAPI(title="Cron Keeper", version="0.1.0")

    @app.on_event("startup")
    async def _startup() -> None:  # pragma: no cover - exercised in integration tests
        if run_loop:
            await keeper_service.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:  # pragma: no cover - exercised in integration tests
        await keeper_service.close()

    async def get_service() -> KeeperService:
        return keeper_service

    @app.get("/healthz")
    async def health(svc: KeeperService = Depends(get_service)) -> Dict[str, Any]:
        return await svc.health()

    @app.get("/metrics")
    async def metrics(svc: KeeperService = Depends(get_service)) -> Response:
        return Response(svc.metrics.render(), media_type=svc.metrics.content_type)

    @app.post("/v1/check")
    async def check(payload: CheckIn, svc: KeeperService = Depends(get_service)) -> Dict[str, Any]:
        context = _hex_to_bytes(payload.check_data, "checkData")
        needed, data = await svc.check(context)
        return {"upkeepNeeded": needed, "performData": "0x" + data.hex()}

    @app.post("/v1/perform")
    async def perform(payload: PerformIn, svc: KeeperService = Depends(get_service)) -> Dict[str, Any]:
        data = _hex_to_bytes(payload.perform_data, "performData")
        try:
            outcome = await svc.perform(data)
        except ActionNoLongerValid as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except InvalidParam as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except KeeperError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        body: Dict[str, Any] = {"action": outcome.kind, "tick": outcome.tick}
        if outcome.refill is not None:
            body["amountConverted"] = outcome.refill.amount_converted
            body["amountReceived"] = outcome.refill.amount_received
        handle = getattr(outcome.action, "handle", None)
        if handle is not None:
            body["job"] = handle
        return body

    return app


__all__ = ["CheckIn", "PerformIn", "create_app"]
