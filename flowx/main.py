from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flowx.config import configure_logging
from flowx.routers import activity, flows, folders, health, projects
from flowx.domain.errors import (
    ConflictError,
    InvariantViolation,
    NotFoundError,
    RemoteCallError,
    ValidationError,
)
from flowx.dependencies import get_store

# HTTP status for the error code carried by a RemoteCallError
REMOTE_STATUS_CODES = {
    "not_found": 404,
    "validation": 400,
    "conflict": 409,
    "invariant_violation": 409,
    "unavailable": 503,
}

app = FastAPI(
    title="FlowX Store API",
    description="Development server for the FlowX reference remote store",
    version="0.1.0",
)

# Configure logging and build the shared store on startup
@app.on_event("startup")
async def startup_event():
    configure_logging()
    get_store()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Domain error handlers
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_error_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(InvariantViolation)
async def invariant_violation_handler(request: Request, exc: InvariantViolation):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(RemoteCallError)
async def remote_call_error_handler(request: Request, exc: RemoteCallError):
    status_code = REMOTE_STATUS_CODES.get(exc.code, 502)
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "code": exc.code})

# Include routers
app.include_router(health.router, tags=["Health"])  # Health check endpoints first
app.include_router(folders.router, tags=["Folders"])
app.include_router(projects.router, tags=["Projects"])
app.include_router(flows.router, tags=["Flows"])
app.include_router(activity.router, tags=["Activity"])

@app.get("/")
async def root():
    return {"message": "FlowX reference store. See /docs for API documentation"}
