"""
api/app.py — FastAPI 앱 인스턴스 + 세션 미들웨어 + static 파일 서빙
"""

import asyncio
import logging
import os
import re
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from config import DATA_DIR, EXAMS_DIR, SESSION_CLEANUP_INTERVAL, SESSION_TTL, STATIC_DIR
from api.routes import router
import api.session as session
from school_cbt.services.exam_catalog import ExamCatalog
from school_cbt.services.storage import FileStore, KeyValueStore

SESSION_COOKIE = "cbt_session"
_SID_PATTERN = re.compile(r"^[0-9a-f]{32}$")

logger = logging.getLogger(__name__)


def create_app(
    store: Optional[KeyValueStore] = None,
    catalog: Optional[ExamCatalog] = None,
) -> FastAPI:
    """
    Args:
        store:   스냅샷/결과 백업 저장소. 기본값은 DATA_DIR 파일 저장소.
        catalog: 시험 목록. 기본값은 EXAMS_DIR.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # 만료 세션 주기적 정리
        async def _cleanup_loop():
            while True:
                await asyncio.sleep(SESSION_CLEANUP_INTERVAL)
                removed = session.cleanup_expired()
                if removed:
                    logger.info(f"만료 세션 {removed}개 정리")

        cleanup = asyncio.create_task(_cleanup_loop())
        try:
            yield
        finally:
            cleanup.cancel()
            session.clear_all()

    app = FastAPI(title="School CBT", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.store = store if store is not None else FileStore(DATA_DIR)
    app.state.catalog = catalog if catalog is not None else ExamCatalog(EXAMS_DIR)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 세션 미들웨어: 쿠키에서 세션 ID를 읽고, 없으면 새로 발급
    # 서버 재시작 후에도 같은 쿠키면 같은 ID를 써서 저장된 스냅샷을 이어받는다
    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        sid = request.cookies.get(SESSION_COOKIE)
        if not sid or not _SID_PATTERN.match(sid):
            sid = session.create_session()
        elif session.get_session(sid) is None:
            session.create_session(sid)

        request.state.session_id = sid
        response: Response = await call_next(request)
        response.set_cookie(
            key=SESSION_COOKIE,
            value=sid,
            httponly=True,
            samesite="lax",
            max_age=SESSION_TTL,
        )
        return response

    app.include_router(router)

    # static 파일 마운트
    if os.path.isdir(STATIC_DIR):
        app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    # 루트 → index.html
    @app.get("/")
    async def serve_index():
        index_path = os.path.join(STATIC_DIR, "index.html")
        if os.path.exists(index_path):
            return FileResponse(index_path)
        return {"error": "index.html not found"}

    return app
