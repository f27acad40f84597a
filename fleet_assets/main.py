import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fleet_assets.config import settings
from fleet_assets.database import init_db
from fleet_assets.routers import auth, organizations, policies, assets, asset_events, uploads, jobs
from fleet_assets.services.policy_service import PolicyNotFoundError

# 导入所有 model 使 SQLAlchemy 注册表结构
import fleet_assets.models  # noqa: F401

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期：启动时建表并灌入资产类型目录"""
    await init_db()
    yield


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="车队资产管理后端 API - 资产全生命周期与状态重算",
    lifespan=lifespan,
)

# CORS 中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# 统一异常处理
@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "code": "VALIDATION_ERROR"})


@app.exception_handler(PolicyNotFoundError)
async def policy_not_found_handler(request: Request, exc: PolicyNotFoundError):
    return JSONResponse(status_code=409, content={"detail": exc.detail, "code": "POLICY_NOT_FOUND"})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"未处理的异常: {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "服务器内部错误", "code": "INTERNAL_ERROR"})


# 注册路由
app.include_router(auth.router)
app.include_router(organizations.router)
app.include_router(policies.router)
app.include_router(assets.router)
app.include_router(asset_events.router)
app.include_router(uploads.router)
app.include_router(jobs.router)


@app.get("/health", tags=["系统"])
async def health_check():
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
    }
