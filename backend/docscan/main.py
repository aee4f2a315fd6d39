import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from docscan.api.v1.csv_rules import router as csv_rules_router
from docscan.api.v1.pdf2sheet import router as pdf2sheet_router
from docscan.api.v1.statements import router as statements_router
from docscan.core.config import get_settings
from docscan.services.errors import FileRetrievalError, InvalidInputError, ScanError

settings = get_settings()

logger = logging.getLogger(__name__)

INTERNAL_ERROR_DETAIL = "Internal server error"

app = FastAPI(
    title="docscan API",
    version="1.0.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.openapi_enabled else None,
)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

app.include_router(statements_router, prefix="/api/v1", tags=["statements"])
app.include_router(pdf2sheet_router, prefix="/api/v1", tags=["pdf2sheet"])
app.include_router(csv_rules_router, prefix="/api/v1", tags=["csv-rules"])


@app.exception_handler(InvalidInputError)
async def _invalid_input_handler(request: Request, exc: InvalidInputError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(FileRetrievalError)
async def _file_retrieval_handler(request: Request, exc: FileRetrievalError):
    logger.error("File retrieval failed on %s: %s", request.url.path, exc)
    detail = f"Failed to retrieve file: {exc}" if settings.expose_error_details else INTERNAL_ERROR_DETAIL
    return JSONResponse(status_code=500, content={"detail": detail})


@app.exception_handler(ScanError)
async def _scan_error_handler(request: Request, exc: ScanError):
    logger.exception("Scan error on %s", request.url.path)
    detail = str(exc) if settings.expose_error_details else INTERNAL_ERROR_DETAIL
    return JSONResponse(status_code=500, content={"detail": detail})


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Hide internal details for 5xx in production unless explicitly enabled.
    if exc.status_code >= 500 and not settings.expose_error_details:
        return JSONResponse(status_code=exc.status_code, content={"detail": INTERNAL_ERROR_DETAIL})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    if settings.expose_error_details:
        return JSONResponse(status_code=500, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": INTERNAL_ERROR_DETAIL})


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    headers = response.headers
    if "X-Content-Type-Options" not in headers:
        headers["X-Content-Type-Options"] = "nosniff"
    if "X-Frame-Options" not in headers:
        headers["X-Frame-Options"] = "DENY"
    if "Referrer-Policy" not in headers:
        headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.get("/health")
async def health_check():
    return {"status": "ok"}
