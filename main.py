from fastapi import APIRouter, FastAPI, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from typing import List, Optional
import uuid
import logging
from contextlib import asynccontextmanager

# Local imports
from config import settings
from errors import JobServiceError
from models import (
    CompleteRequest,
    DeployRequest,
    DeployResponse,
    Job,
    JobCreateRequest,
    JobCreateResponse,
    LighthouseAfterRequest,
    LighthouseBeforeRequest,
    LighthouseResponse,
)
from store import build_store
from lifecycle import JobLifecycle
from notifications import build_notifier
from auditor import build_auditor
from deploy import build_deployer
from security import security_manager
from rate_limiter import limiter, job_creation_limit, setup_rate_limiting
from health import health_router
from monitoring import setup_monitoring

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(settings.log_file),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    store = build_store(settings)
    try:
        store.init()
    except Exception as e:
        logger.error(f"Startup error: {e}")
        raise
    app.state.store = store
    app.state.lifecycle = JobLifecycle(
        store,
        notifier=build_notifier(settings),
        auditor=build_auditor(settings),
        deployer=build_deployer(settings),
    )
    logger.info(f"Application started with {type(store).__name__}")

    yield

    # Shutdown
    logger.info("Application shutting down")
    store.close()

app = FastAPI(
    title="Website Optimizer API",
    description="Job queue for website optimization requests processed by the Ares worker",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.cors_origin],
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_rate_limiting(app)
setup_monitoring(app)

def get_lifecycle(request: Request) -> JobLifecycle:
    return request.app.state.lifecycle

require_admin = Depends(security_manager.require_admin)

@app.exception_handler(JobServiceError)
async def job_service_exception_handler(request: Request, exc: JobServiceError):
    if exc.status_code >= 500:
        logger.error(f"Backend error on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request body", "errors": jsonable_encoder(exc.errors())}
    )

# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception on {request.url}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error_id": str(uuid.uuid4())}
    )

router = APIRouter(prefix="/api")

@router.post("/jobs", response_model=JobCreateResponse)
@limiter.limit(job_creation_limit)
def submit_job(
    request: Request,
    body: JobCreateRequest,
    lifecycle: JobLifecycle = Depends(get_lifecycle)
):
    """Submit a website for optimization"""
    job = lifecycle.submit(body.url, body.email)
    return JobCreateResponse(
        success=True,
        message="Job submitted! We will optimize your website and email you the results.",
        jobId=job.id
    )

@router.get("/jobs/pending", response_model=List[Job], dependencies=[require_admin])
def list_pending_jobs(lifecycle: JobLifecycle = Depends(get_lifecycle)):
    """Jobs waiting for the worker (admin endpoint)"""
    return lifecycle.list_pending()

@router.get("/jobs/all", response_model=List[Job], dependencies=[require_admin])
def list_all_jobs(lifecycle: JobLifecycle = Depends(get_lifecycle)):
    """All jobs, newest first (admin endpoint)"""
    return lifecycle.list_all()

@router.get("/jobs/{job_id}", response_model=Job)
def get_job_status(job_id: str, lifecycle: JobLifecycle = Depends(get_lifecycle)):
    """Get job status"""
    return lifecycle.get(job_id)

@router.post("/jobs/{job_id}/lighthouse-before", response_model=LighthouseResponse,
             dependencies=[require_admin])
def lighthouse_before(
    job_id: str,
    body: Optional[LighthouseBeforeRequest] = None,
    lifecycle: JobLifecycle = Depends(get_lifecycle)
):
    """Record pre-optimization scores and mark the job as processing"""
    scores = lifecycle.record_before(job_id, body.scores if body else None)
    return LighthouseResponse(success=True, scores=scores)

@router.post("/jobs/{job_id}/lighthouse-after", response_model=LighthouseResponse,
             dependencies=[require_admin])
def lighthouse_after(
    job_id: str,
    body: LighthouseAfterRequest,
    lifecycle: JobLifecycle = Depends(get_lifecycle)
):
    """Record post-optimization scores"""
    scores = lifecycle.record_after(job_id, body.scores, body.netlifyUrl)
    return LighthouseResponse(success=True, scores=scores)

@router.post("/jobs/{job_id}/complete", dependencies=[require_admin])
def complete_job(
    job_id: str,
    body: CompleteRequest,
    lifecycle: JobLifecycle = Depends(get_lifecycle)
):
    """Mark the job completed and notify the submitter"""
    result = lifecycle.complete(job_id, body.netlifyUrl, body.notes, body.htmlContent)
    response = {"success": True, "job": result.job.to_dict()}
    if result.email_sent is not None:
        response["emailSent"] = result.email_sent
        if result.email_error:
            response["emailError"] = result.email_error
    return response

@router.post("/jobs/{job_id}/deploy", response_model=DeployResponse,
             dependencies=[require_admin])
def deploy_job(
    job_id: str,
    body: DeployRequest,
    lifecycle: JobLifecycle = Depends(get_lifecycle)
):
    """Deploy optimized HTML to Netlify"""
    deploy_url = lifecycle.deploy(job_id, body.htmlContent, body.siteName)
    return DeployResponse(success=True, deployUrl=deploy_url)

app.include_router(router)
app.include_router(health_router, prefix="/health", tags=["health"])
app.include_router(health_router, prefix="/api/health", include_in_schema=False)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
