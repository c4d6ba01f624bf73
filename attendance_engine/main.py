from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from attendance_engine.api.v1.attendance.router import router as attendance_router
from attendance_engine.api.v1.attendance_statuses.router import router as attendance_statuses_router
from attendance_engine.api.v1.calendar.router import router as calendar_router
from attendance_engine.api.v1.cascade.router import router as cascade_router
from attendance_engine.api.v1.cycles.router import router as cycles_router
from attendance_engine.api.v1.enrollments.router import router as enrollments_router
from attendance_engine.api.v1.justifications.router import router as justifications_router
from attendance_engine.api.v1.reports.router import router as reports_router
from attendance_engine.core.aggregation import report_queue
from attendance_engine.core.app_logger import get_logger, setup_logging
from attendance_engine.core.config import settings
from attendance_engine.core.notifications import wait_for_pending
from attendance_engine.core.scheduler import shutdown_scheduler, start_scheduler
from attendance_engine.db.session import dispose_engine

logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    report_queue.start()
    start_scheduler()
    logger.info("Attendance engine started")
    yield
    shutdown_scheduler()
    await report_queue.stop()
    await wait_for_pending()
    await dispose_engine()
    logger.info("Attendance engine stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="Attendance Engine", lifespan=lifespan)

    # CORS: origins come from CORS_ORIGINS (JSON list)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(cycles_router)
    app.include_router(calendar_router)
    app.include_router(cascade_router)
    app.include_router(enrollments_router)
    app.include_router(attendance_statuses_router)
    app.include_router(attendance_router)
    app.include_router(justifications_router)
    app.include_router(reports_router)

    return app


app = create_app()
