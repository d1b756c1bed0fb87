import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from errors import ServiceError

# Routers
from routers.admin import router as admin_router
from routers.ai_drafts import router as ai_router
from routers.auth import router as auth_router
from routers.courses import router as courses_router
from routers.evaluations import router as evaluations_router
from routers.grading import router as grading_router
from routers.health import router as health_router
from routers.questions import router as questions_router
from routers.quizzes import router as quizzes_router
from routers.sessions import router as sessions_router

logger = logging.getLogger("tutorhub")
logging.basicConfig(level=logging.INFO)

app = FastAPI(title="TutorHub – Tutoring API")

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if o.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*", "authorization", "x-admin-token"],
)


@app.exception_handler(ServiceError)
def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.get("/")
def health_root():
    return {"ok": True}


app.include_router(auth_router)  # /auth/...
app.include_router(courses_router)  # /courses/...
app.include_router(questions_router)  # /questions/...
app.include_router(quizzes_router)  # /quizzes/...
app.include_router(sessions_router)  # /sessions/...
app.include_router(evaluations_router)  # /evaluations/...
app.include_router(ai_router)  # /ai/...
app.include_router(admin_router)  # /admin/...
app.include_router(grading_router)  # /evaluate
app.include_router(health_router)  # /health/...
