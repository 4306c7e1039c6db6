"""
Web アプリケーション

FastAPI を使用した記録取得 API の実装。起動時にチケット方式のログインを行い、
失敗した場合はサーバーを起動しない。
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

import httpx
from fastapi import APIRouter, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tmrecords import __version__
from tmrecords.auth.base import Provider
from tmrecords.errors import TmException
from tmrecords.runtime import Runtime
from tmrecords.services.leaderboards import filter_records_by_period
from tmrecords.webapp.models import ErrorResponse, HealthResponse, MapLeaderboardResponse, RecordResponse

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse, "description": "必須パラメータ不足"},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse, "description": "上流 API の失敗"},
}


def create_app(runtime: Runtime) -> FastAPI:
    """アプリケーションを生成する

    Args:
        runtime: 共有コンポーネント。lifespan 終了時に閉じられる

    Returns:
        FastAPI: 設定済みのアプリケーション
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # 起動時ログインの失敗は送出してサーバーを止める
        try:
            await runtime.initial_login()
        except Exception:
            logger.critical("Initial login failed. Server will not start.")
            await runtime.aclose()
            raise
        logger.info("Initial login completed")

        stop_event = asyncio.Event()
        scheduler_task: Optional[asyncio.Task] = None
        if runtime.settings.scheduler_enabled:
            scheduler_task = asyncio.create_task(runtime.scheduler.run_forever(stop_event))
            logger.info("Alert scheduler started")

        app.state.started_at = time.monotonic()
        try:
            yield
        finally:
            stop_event.set()
            if scheduler_task is not None:
                scheduler_task.cancel()
                try:
                    await scheduler_task
                except asyncio.CancelledError:
                    pass
            await runtime.aclose()
            logger.info("Runtime closed")

    app = FastAPI(
        title="tmrecords",
        description="Trackmania のマップ記録を取得・通知する API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    app.state.started_at = time.monotonic()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse, tags=["system"])
    async def health_check(request: Request) -> HealthResponse:
        """ヘルスチェックエンドポイント

        トークンの値は返さず、取得済みかどうかのみを返す。
        """
        store = request.app.state.runtime.token_store
        return HealthResponse(
            status="OK",
            timestamp=datetime.now(timezone.utc).isoformat(),
            uptime=time.monotonic() - request.app.state.started_at,
            version=__version__,
            tokens={
                provider.value: store.get_access_token(provider) is not None
                for provider in Provider
            },
        )

    api_router = APIRouter(prefix="/api/v1/records", tags=["records"])

    @api_router.get(
        "/latest",
        response_model=List[RecordResponse],
        response_model_by_alias=True,
        responses=ERROR_RESPONSES,
    )
    async def get_map_records(
        request: Request,
        map_uid: Optional[str] = Query(default=None, alias="mapUid"),
        period: Optional[str] = Query(default=None),
    ):
        """期間内に記録されたリーダーボードのエントリを返す

        Args:
            map_uid: マップ UID
            period: ``1d`` / ``1w`` / ``1m``。それ以外は空リスト
        """
        if not map_uid or not period:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "Missing required query parameters: mapUid or period"},
            )

        leaderboards = request.app.state.runtime.leaderboards
        try:
            data = await leaderboards.get_records(map_uid)
        except TmException as exc:
            logger.error("Error fetching leaderboard data: %s", exc)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Internal Server Error"},
            )

        return [RecordResponse.from_record(record) for record in filter_records_by_period(data, period)]

    app.include_router(api_router)

    users_router = APIRouter(prefix="/api/v1/users", tags=["users"])

    @users_router.get(
        "/maps",
        response_model=List[MapLeaderboardResponse],
        response_model_by_alias=True,
        responses=ERROR_RESPONSES,
    )
    async def get_user_maps(
        request: Request,
        username: Optional[str] = Query(default=None),
        period: Optional[str] = Query(default=None),
    ):
        """マッパーの全マップと、記録のあるマップのリーダーボードを返す

        Args:
            username: マッパー名
            period: ``1d`` / ``1w`` / ``1m``。省略時は期間で絞り込まない
        """
        if not username:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "Missing required query parameter: username"},
            )

        leaderboards = request.app.state.runtime.leaderboards
        try:
            maps = await leaderboards.fetch_maps_and_leaderboards(username, period)
        except (TmException, httpx.HTTPError) as exc:
            logger.error("Error fetching maps for %s: %s", username, exc)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Internal Server Error"},
            )

        return [MapLeaderboardResponse.from_map(entry) for entry in maps]

    app.include_router(users_router)

    async def not_found(request: Request, _exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "Route not found", "path": request.url.path},
        )

    app.add_exception_handler(status.HTTP_404_NOT_FOUND, not_found)

    return app
