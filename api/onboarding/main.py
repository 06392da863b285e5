import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .errors import OnboardingError
from .routers import catalog, documents, esignature, leads

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Onboarding API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(OnboardingError)
def onboarding_error(request: Request, exc: OnboardingError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
def request_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        where = ".".join(str(p) for p in errors[0].get("loc", ()) if p != "body")
        message = f"{where}: {errors[0].get('msg')}" if where else errors[0].get("msg", message)
    return JSONResponse(status_code=400, content={"error": message})


app.include_router(leads.router, prefix="/api/erp", tags=["leads"])
app.include_router(catalog.router, prefix="/api/erp", tags=["catalog"])
app.include_router(esignature.router, prefix="/api/e-signature", tags=["e-signature"])
app.include_router(documents.router, prefix="/api/documents", tags=["documents"])


@app.get("/")
def root():
    return {"ok": True, "service": "onboarding-api"}
