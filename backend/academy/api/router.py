from fastapi import APIRouter

from academy.api.routes.assessments import router as assessments_router

api_router = APIRouter()
api_router.include_router(assessments_router)


@api_router.get("/healthz")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}
