from fastapi import APIRouter

from app.modules.document_submissions import router as document_submissions_router

api_router = APIRouter()

api_router.include_router(
    document_submissions_router,
    prefix="/document-submissions",
    tags=["Document Submissions"],
)
