import logging
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from dyntables import __version__, config
from dyntables.database import Services, dispose_db_engine, init_db_engine
from dyntables.errors import (
    AlreadyExists,
    InvalidColumns,
    InvalidName,
    InvalidRowValues,
    MissingRequiredFields,
    RowNotFound,
    StorageError,
    TableNotFound,
    UnsupportedType,
)
from dyntables.models import ProvisionRequest, TableDefinition
from dyntables.security import get_client_identifier, require_admin

logging.basicConfig(level=config.LOG_LEVEL)

app = FastAPI(
    title="Dynamic Tables API",
    description="Provision tables at runtime and get CRUD, search and pagination over them",
    version=__version__,
)
logger = logging.getLogger("uvicorn")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

limiter = Limiter(key_func=get_client_identifier)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Lifecycle Events
@app.on_event("startup")
def startup_event():
    """Create the engine and the registry table before serving requests."""
    if not config.ADMIN_TOKEN:
        logger.warning("ADMIN_TOKEN is not set; admin routes are unauthenticated")
    app.state.services = Services(init_db_engine()).start()
    logger.info("Application startup complete")


@app.on_event("shutdown")
def shutdown_event():
    dispose_db_engine()
    logger.info("Clean shutdown complete")


def get_services(request: Request) -> Services:
    return request.app.state.services


def resolve_table(table: str, services: Services = Depends(get_services)) -> TableDefinition:
    return services.registry.require(table)


# Error mapping
@app.exception_handler(InvalidName)
async def invalid_name_handler(request: Request, e: InvalidName):
    return JSONResponse(status_code=400, content={"errors": {"tableName": e.reason}})


@app.exception_handler(AlreadyExists)
async def already_exists_handler(request: Request, e: AlreadyExists):
    return JSONResponse(status_code=400, content={"errors": {"tableName": "already exists"}})


@app.exception_handler(InvalidColumns)
async def invalid_columns_handler(request: Request, e: InvalidColumns):
    return JSONResponse(status_code=400, content={"errors": e.errors})


@app.exception_handler(UnsupportedType)
async def unsupported_type_handler(request: Request, e: UnsupportedType):
    return JSONResponse(status_code=400, content={"message": str(e)})


@app.exception_handler(MissingRequiredFields)
async def missing_fields_handler(request: Request, e: MissingRequiredFields):
    return JSONResponse(
        status_code=400,
        content={"message": "missing required fields", "fields": e.fields},
    )


@app.exception_handler(InvalidRowValues)
async def invalid_values_handler(request: Request, e: InvalidRowValues):
    return JSONResponse(
        status_code=400,
        content={"message": "invalid field values", "errors": e.errors},
    )


@app.exception_handler(TableNotFound)
async def table_not_found_handler(request: Request, e: TableNotFound):
    return JSONResponse(status_code=404, content={"message": "table not found"})


@app.exception_handler(RowNotFound)
async def row_not_found_handler(request: Request, e: RowNotFound):
    return JSONResponse(status_code=404, content={"message": "row not found"})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, e: StorageError):
    logger.error(f"Storage failure on {request.method} {request.url.path}: {e}", exc_info=e)
    return JSONResponse(status_code=500, content={"message": "internal server error"})


# Health Check Endpoint
@app.get("/")
@limiter.limit("100/minute")
def health_check(request: Request):
    return {"status": "healthy", "service": "dyntables", "version": __version__}


# Provisioning Endpoints
@app.post("/provision/table", dependencies=[Depends(require_admin)])
@limiter.limit("30/minute")
def provision_table(
    request: Request,
    body: ProvisionRequest,
    services: Services = Depends(get_services),
):
    definition = services.provisioning.provision(body.tableName, body.columns)
    return definition.to_public()


@app.get("/provision/tables", dependencies=[Depends(require_admin)])
@limiter.limit("100/minute")
def list_tables(request: Request, services: Services = Depends(get_services)):
    return [entry.to_public() for entry in services.provisioning.list_tables()]


@app.get("/provision/table/{table_name}", dependencies=[Depends(require_admin)])
@limiter.limit("100/minute")
def get_table_meta(
    request: Request,
    table_name: str,
    services: Services = Depends(get_services),
):
    definition = services.provisioning.get_meta(table_name)
    if definition is None:
        raise TableNotFound(table_name)
    return definition.to_public()


@app.delete("/provision/table/{table_name}", dependencies=[Depends(require_admin)])
@limiter.limit("30/minute")
def deprovision_table(
    request: Request,
    table_name: str,
    services: Services = Depends(get_services),
):
    services.provisioning.deprovision(table_name)
    return {"message": "table deleted successfully", "tableName": table_name}


# Dynamic Row Endpoints
@app.get("/api/{table}", dependencies=[Depends(require_admin)])
@limiter.limit("100/minute")
def list_rows(
    request: Request,
    q: Optional[str] = Query(None, description="Substring searched in string/text columns"),
    page: Optional[str] = Query(None, description="Page number (1-indexed)"),
    pageSize: Optional[str] = Query(None, description="Rows per page (1-100, default 20)"),
    sort: Optional[str] = Query(None, description="Column to sort by (default id)"),
    order: Optional[str] = Query(None, description="asc or desc"),
    definition: TableDefinition = Depends(resolve_table),
    services: Services = Depends(get_services),
):
    params = {"q": q, "page": page, "pageSize": pageSize, "sort": sort, "order": order}
    return services.rows.query(definition, params).model_dump(by_alias=True)


@app.get("/api/{table}/{row_id}", dependencies=[Depends(require_admin)])
@limiter.limit("100/minute")
def get_row(
    request: Request,
    row_id: int,
    definition: TableDefinition = Depends(resolve_table),
    services: Services = Depends(get_services),
):
    return services.rows.get(definition, row_id)


@app.post("/api/{table}", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_admin)])
@limiter.limit("100/minute")
def create_row(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    definition: TableDefinition = Depends(resolve_table),
    services: Services = Depends(get_services),
):
    return services.rows.insert(definition, payload)


@app.put("/api/{table}/{row_id}", dependencies=[Depends(require_admin)])
@limiter.limit("100/minute")
def update_row(
    request: Request,
    row_id: int,
    payload: Dict[str, Any] = Body(...),
    definition: TableDefinition = Depends(resolve_table),
    services: Services = Depends(get_services),
):
    return services.rows.update(definition, row_id, payload)


@app.delete(
    "/api/{table}/{row_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin)],
)
@limiter.limit("100/minute")
def delete_row(
    request: Request,
    row_id: int,
    definition: TableDefinition = Depends(resolve_table),
    services: Services = Depends(get_services),
):
    services.rows.delete(definition, row_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
