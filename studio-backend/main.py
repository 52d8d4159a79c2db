"""
SQL Studio - REST API
=====================

Admin API for browsing and mutating tables in a SQLite database.

Every route that touches the database goes through TableManager, which runs
the SQL Safety Gateway (sql_guard + statement_policy) before anything reaches
the engine. This module only handles routing, authentication and turning
exceptions into the JSON envelope:

    {"success": false, "error": "<message>"}

Status mapping:
- ValidationRejected          -> 400 (message surfaced verbatim)
- MissingPrimaryKey           -> 400
- RowNotFound / ApiKeyNotFound -> 404
- ApiKeyExists                -> 409
- ApiKeyStoreUnavailable      -> 503
- Engine errors               -> 500 (engine message passed through)
- Anything else               -> 500

Author: SQL Studio Team
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from api_keys import (
    ApiKeyAuthenticator,
    ApiKeyExists,
    ApiKeyNotFound,
    ApiKeyStore,
    ApiKeyStoreUnavailable,
    InvalidApiKeyName,
)
from db_manager import MissingPrimaryKey, RowNotFound, TableManager
from sql_guard import ValidationRejected

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Pydantic Models
class QueryRequest(BaseModel):
    sql: Optional[str] = None
    params: Optional[List[Any]] = None


class CreateTableRequest(BaseModel):
    sql: Optional[str] = None


class RenameTableRequest(BaseModel):
    newTableName: Optional[str] = None


class AddColumnRequest(BaseModel):
    columnName: Optional[str] = None
    columnType: Optional[str] = None
    constraints: Optional[str] = None


class RenameColumnRequest(BaseModel):
    newColumnName: Optional[str] = None


class CreateKeyRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


def success(data: Any = None, **extra) -> Dict[str, Any]:
    body = {"success": True}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


def failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


# =============================================================================
# Dependencies
# =============================================================================

def get_tables(request: Request) -> TableManager:
    return request.app.state.tables


def get_key_store(request: Request) -> ApiKeyStore:
    store = request.app.state.key_store
    if store is None:
        raise ApiKeyStoreUnavailable(
            "API key store not configured. Set API_KEYS_DATABASE_URL to manage keys."
        )
    return store


async def require_api_key(request: Request, authorization: Optional[str] = Header(None)):
    if not request.app.state.authenticator.authenticate(authorization):
        raise HTTPException(status_code=401, detail="Unauthorized")


# =============================================================================
# Exception handlers
# =============================================================================

def register_exception_handlers(app: FastAPI):
    @app.exception_handler(ValidationRejected)
    async def validation_rejected_handler(request: Request, exc: ValidationRejected):
        return failure(400, exc.message)

    @app.exception_handler(MissingPrimaryKey)
    async def missing_pk_handler(request: Request, exc: MissingPrimaryKey):
        return failure(400, str(exc))

    @app.exception_handler(InvalidApiKeyName)
    async def invalid_key_name_handler(request: Request, exc: InvalidApiKeyName):
        return failure(400, str(exc))

    @app.exception_handler(RowNotFound)
    async def row_not_found_handler(request: Request, exc: RowNotFound):
        return failure(404, str(exc))

    @app.exception_handler(ApiKeyNotFound)
    async def key_not_found_handler(request: Request, exc: ApiKeyNotFound):
        return failure(404, str(exc))

    @app.exception_handler(ApiKeyExists)
    async def key_exists_handler(request: Request, exc: ApiKeyExists):
        return failure(409, str(exc))

    @app.exception_handler(ApiKeyStoreUnavailable)
    async def key_store_handler(request: Request, exc: ApiKeyStoreUnavailable):
        return failure(503, str(exc))

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        message = str(exc.orig) if isinstance(exc, DBAPIError) and exc.orig is not None else str(exc)
        logger.error(f"Database error on {request.method} {request.url.path}: {message}")
        return failure(500, message)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return failure(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
            message = f"Invalid request: {location + ': ' if location else ''}{errors[0].get('msg')}"
        else:
            message = "Invalid request"
        return failure(400, message)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc!r}")
        return failure(500, str(exc) or exc.__class__.__name__)


# =============================================================================
# Routes
# =============================================================================

api = APIRouter(prefix="/api", dependencies=[Depends(require_api_key)])


@api.get("/keys")
async def list_keys(store: ApiKeyStore = Depends(get_key_store)):
    return success(store.list())


@api.delete("/keys/{name}")
async def delete_key(name: str, store: ApiKeyStore = Depends(get_key_store)):
    store.delete(name)
    return success()


@api.get("/tables")
async def list_tables(tables: TableManager = Depends(get_tables)):
    return success(tables.list_tables())


@api.post("/tables")
async def create_table(body: CreateTableRequest, tables: TableManager = Depends(get_tables)):
    return success(tables.create_table(body.sql))


@api.delete("/tables/{table_name}")
async def drop_table(table_name: str, tables: TableManager = Depends(get_tables)):
    return success(tables.drop_table(table_name))


@api.get("/tables/{table_name}/schema")
async def get_table_schema(table_name: str, tables: TableManager = Depends(get_tables)):
    return success(tables.get_table_schema(table_name))


@api.put("/tables/{table_name}/rename")
async def rename_table(table_name: str, body: RenameTableRequest, tables: TableManager = Depends(get_tables)):
    return success(tables.rename_table(table_name, body.newTableName))


@api.post("/tables/{table_name}/columns")
async def add_column(table_name: str, body: AddColumnRequest, tables: TableManager = Depends(get_tables)):
    return success(tables.add_column(table_name, body.columnName, body.columnType, body.constraints))


@api.put("/tables/{table_name}/columns/{column_name}")
async def rename_column(
    table_name: str,
    column_name: str,
    body: RenameColumnRequest,
    tables: TableManager = Depends(get_tables),
):
    return success(tables.rename_column(table_name, column_name, body.newColumnName))


@api.delete("/tables/{table_name}/columns/{column_name}")
async def drop_column(table_name: str, column_name: str, tables: TableManager = Depends(get_tables)):
    return success(tables.drop_column(table_name, column_name))


@api.get("/tables/{table_name}/rows")
async def get_table_data(
    table_name: str,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    tables: TableManager = Depends(get_tables),
):
    result = tables.get_table_data(table_name, page, limit)
    return success(
        result["data"],
        meta={"page": result["page"], "limit": result["limit"], "total": result["total"]},
    )


@api.get("/tables/{table_name}/rows/{row_id}")
async def get_row(table_name: str, row_id: str, tables: TableManager = Depends(get_tables)):
    return success(tables.get_row(table_name, row_id))


@api.post("/tables/{table_name}/rows")
async def insert_row(
    table_name: str,
    data: Any = Body(...),
    tables: TableManager = Depends(get_tables),
):
    return success(tables.insert_row(table_name, data))


@api.put("/tables/{table_name}/rows/{row_id}")
async def update_row(
    table_name: str,
    row_id: str,
    data: Any = Body(...),
    tables: TableManager = Depends(get_tables),
):
    return success(tables.update_row(table_name, row_id, data))


@api.delete("/tables/{table_name}/rows/{row_id}")
async def delete_row(table_name: str, row_id: str, tables: TableManager = Depends(get_tables)):
    return success(tables.delete_row(table_name, row_id))


@api.post("/query")
async def execute_query(body: QueryRequest, tables: TableManager = Depends(get_tables)):
    return success(tables.execute_query(body.sql, body.params))


# Key bootstrap routes live outside the authenticated router: the first key
# has to be creatable before any key exists.
public = APIRouter(prefix="/api")


@public.get("/keys/status")
async def keys_status(request: Request):
    store = request.app.state.key_store
    return success({"hasKeys": store.has_any() if store is not None else False})


@public.post("/keys")
async def create_key(
    request: Request,
    body: CreateKeyRequest,
    authorization: Optional[str] = Header(None),
    store: ApiKeyStore = Depends(get_key_store),
):
    if authorization is None:
        if store.has_any():
            raise HTTPException(status_code=401, detail="Unauthorized")
        logger.info("First-time setup: creating initial API key")
    elif not request.app.state.authenticator.authenticate(authorization):
        raise HTTPException(status_code=401, detail="Unauthorized")

    return success(store.create(body.name, body.description))


# =============================================================================
# App factory
# =============================================================================

def check_database_urls(database_url: str, api_keys_database_url: Optional[str]):
    """The key table must never be reachable from /api/query"""
    if api_keys_database_url and api_keys_database_url == database_url:
        raise RuntimeError("API_KEYS_DATABASE_URL must point to a different database than DATABASE_URL")


def create_app(
    database_url: Optional[str] = None,
    api_keys_database_url: Optional[str] = None,
    api_key: Optional[str] = None,
) -> FastAPI:
    """
    Build the API.

    Arguments default to the values in config (environment / .env).
    """
    database_url = database_url or config.DATABASE_URL
    api_keys_database_url = api_keys_database_url or config.API_KEYS_DATABASE_URL
    api_key = api_key or config.API_KEY

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize database and key store on startup"""
        try:
            logger.info("Initializing SQL Studio...")
            check_database_urls(database_url, api_keys_database_url)
            app.state.tables = TableManager(database_url, schema_cache_ttl=config.SCHEMA_CACHE_TTL)

            if api_keys_database_url:
                app.state.key_store = ApiKeyStore(api_keys_database_url, cache_ttl=config.API_KEY_CACHE_TTL)
            else:
                app.state.key_store = None
                if api_key == config.DEFAULT_API_KEY:
                    logger.warning("Using the default development API key - set API_KEY in production")

            app.state.authenticator = ApiKeyAuthenticator(app.state.key_store, api_key)
            logger.info("SQL Studio ready")
        except Exception as e:
            logger.error(f"Startup failed: {str(e)}")
            raise

        yield

        logger.info("Shutting down SQL Studio...")
        app.state.tables.engine.dispose()
        if app.state.key_store is not None:
            app.state.key_store.engine.dispose()

    app = FastAPI(
        title="SQL Studio API",
        description="Table browser and guarded SQL execution for SQLite",
        version="1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    register_exception_handlers(app)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        try:
            return {
                "status": "healthy",
                "version": "1.0",
                "database_tables": len(app.state.tables.list_tables()),
                "key_store": app.state.key_store is not None,
            }
        except Exception as e:
            return {"status": "unhealthy", "error": str(e)}

    app.include_router(public)
    app.include_router(api)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.HOST, port=config.PORT)
