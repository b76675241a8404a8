from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from aptitude_service.config import configure_logging
from aptitude_service.api.subjects_api import router as subjects_router
from aptitude_service.api.batch_api import router as batch_router
from aptitude_service.api.reports_api import router as reports_router

configure_logging()

app = FastAPI(
    title="BAT-7 Aptitude Scoring Service",
    description="能力倾向测验计分、汇总与报告服务API文档",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# 配置CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 生产环境请设置具体的域名
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(subjects_router, prefix="/api/v1", tags=["受试者API"])
app.include_router(batch_router, prefix="/api/v1", tags=["批量报告API"])
app.include_router(reports_router, prefix="/api/v1", tags=["报告API"])


@app.get("/")
async def root():
    return {
        "message": "BAT-7 Aptitude Scoring Service",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("aptitude_service.main:app", host="0.0.0.0", port=8000, reload=False)
