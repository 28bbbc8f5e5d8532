from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
import asyncio
import hashlib
import logging
import sys
import time
import uvicorn

import database
from config import Config
from database import SessionLocal, create_schema, init_engine, ping
from models.ClientRequest import ClientRequest
from routers.activities import router as activities_router
from routers.admin import router as admin_router
from routers.analytics import router as analytics_router
from routers.auth import router as auth_router
from routers.bookings import router as bookings_router
from routers.cities import router as cities_router
from routers.itinerary import router as itinerary_router
from routers.socket import router as socket_router
from routers.trips import router as trips_router
from utils.errors import AppError, error_body
from utils.logging_config import level_for_env, setup_logging
from utils.time_utils import utcnow
from utils.validation import pydantic_message


setup_logging(level_for_env(Config.NODE_ENV))

IDEMPOTENT_METHODS = ("POST", "PUT", "DELETE")
CLIENT_REQUEST_HEADER = "X-Client-Request-Id"

HTTP_ERROR_KINDS = {
	400: "validation",
	401: "unauthenticated",
	403: "forbidden",
	404: "not_found",
	405: "validation",
	409: "conflict",
	413: "payload_too_large",
	422: "validation",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
	"""Bind the database on startup; dispose the pool on shutdown."""
	owns_engine = database.engine is None
	if owns_engine:
		init_engine()
	create_schema()
	for warning in Config.validate():
		logging.warning(warning)
	logging.info("app.startup env=%s", Config.NODE_ENV)
	yield
	if owns_engine:
		database.shutdown()
	logging.info("app.shutdown")


# Public API docs only outside production (/docs, /redoc, /openapi.json)
if Config.is_production():
	app = FastAPI(title="GlobeTrotter API", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
else:
	app = FastAPI(title="GlobeTrotter API", lifespan=lifespan)


# ---------- Error rendering ----------

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
	if exc.status_code >= 500:
		logging.error("http.error kind=%s path=%s message=%s", exc.kind, request.url.path, exc.message)
	return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
	return JSONResponse(status_code=400, content=error_body("validation", pydantic_message(exc)))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
	kind = HTTP_ERROR_KINDS.get(exc.status_code, "internal")
	status_code = exc.status_code if exc.status_code in HTTP_ERROR_KINDS else 500
	message = exc.detail if isinstance(exc.detail, str) else kind.replace("_", " ")
	return JSONResponse(status_code=status_code, content=error_body(kind, message))


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
	logging.warning("http.integrity_error path=%s error=%s", request.url.path, exc.orig)
	return JSONResponse(status_code=409, content=error_body("conflict", "The request conflicts with existing data"))


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
	logging.error("http.database_error path=%s error=%s", request.url.path, exc.orig)
	return JSONResponse(status_code=500, content=error_body("internal", "Database unavailable"))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
	logging.exception("http.unhandled path=%s", request.url.path)
	return JSONResponse(status_code=500, content=error_body("internal", "Internal server error"))


# ---------- Middleware (last registered runs first) ----------

def _client_request_key(request: Request, request_id: str) -> str:
	raw = "\n".join([
		request.headers.get("Authorization", ""),
		request.method,
		request.url.path,
		request_id,
	])
	return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _client_request_cutoff():
	return utcnow() - timedelta(seconds=Config.CLIENT_REQUEST_TTL_SECONDS)


def _load_client_request(key: str):
	db = SessionLocal()
	try:
		stored = db.get(ClientRequest, key)
		if stored is None or stored.created_at < _client_request_cutoff():
			return None
		return stored
	finally:
		db.close()


def _store_client_request(key: str, status_code: int, body: bytes, media_type: str) -> None:
	db = SessionLocal()
	try:
		# expired keys go first, including an expired copy of this one
		db.query(ClientRequest).filter(ClientRequest.created_at < _client_request_cutoff()).delete(synchronize_session=False)
		db.add(ClientRequest(key=key, status_code=status_code, body=body.decode("utf-8"), media_type=media_type))
		db.commit()
	except IntegrityError:
		# a concurrent retry stored it first
		db.rollback()
	except SQLAlchemyError:
		db.rollback()
		logging.exception("http.idempotency store failed key=%s", key)
	finally:
		db.close()


@app.middleware("http")
async def idempotency_middleware(request: Request, call_next):
	"""Replay the stored response of a write retried with the same X-Client-Request-Id."""
	request_id = (request.headers.get(CLIENT_REQUEST_HEADER) or "").strip()
	if request.method not in IDEMPOTENT_METHODS or not request_id:
		return await call_next(request)

	key = _client_request_key(request, request_id)
	stored = _load_client_request(key)
	if stored is not None:
		logging.info("http.idempotent_replay method=%s path=%s status=%s", request.method, request.url.path, stored.status_code)
		return Response(content=stored.body, status_code=stored.status_code, media_type=stored.media_type)

	response = await call_next(request)
	media_type = response.headers.get("content-type", "")
	if response.status_code >= 500 or not media_type.startswith("application/json"):
		return response

	body = b"".join([chunk async for chunk in response.body_iterator])
	_store_client_request(key, response.status_code, body, media_type)
	headers = {k: v for k, v in response.headers.items() if k.lower() != "content-length"}
	return Response(content=body, status_code=response.status_code, headers=headers)


@app.middleware("http")
async def cache_control_middleware(request: Request, call_next):
	response = await call_next(request)
	# reads revalidate; writes are never cached
	response.headers["Cache-Control"] = "no-cache" if request.method in ("GET", "HEAD") else "no-store"
	return response


@app.middleware("http")
async def timeout_middleware(request: Request, call_next):
	is_upload = request.headers.get("content-type", "").startswith("multipart/form-data")
	budget = Config.UPLOAD_TIMEOUT_SECONDS if is_upload else Config.REQUEST_TIMEOUT_SECONDS
	try:
		return await asyncio.wait_for(call_next(request), timeout=budget)
	except asyncio.TimeoutError:
		logging.error("http.timeout method=%s path=%s budget=%ss", request.method, request.url.path, budget)
		return JSONResponse(status_code=504, content=error_body("internal", "Request timed out"))


@app.middleware("http")
async def request_log_middleware(request: Request, call_next):
	started = time.perf_counter()
	response = await call_next(request)
	logging.info(
		"http.request method=%s path=%s status=%s duration_ms=%.1f",
		request.method, request.url.path, response.status_code, (time.perf_counter() - started) * 1000,
	)
	return response


app.add_middleware(
	CORSMiddleware,
	allow_origins=Config.FRONTEND_ORIGINS,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)


# ---------- Routes ----------

app.include_router(auth_router)
app.include_router(trips_router)
app.include_router(itinerary_router)
app.include_router(cities_router)
app.include_router(activities_router)
app.include_router(analytics_router)
app.include_router(bookings_router)
app.include_router(admin_router)
app.include_router(socket_router)

Path(Config.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=Config.UPLOAD_DIR), name="uploads")


@app.get("/health")
async def health():
	"""Liveness plus database reachability."""
	db = SessionLocal()
	try:
		database_ok = ping(db)
	finally:
		db.close()
	return {"status": "ok" if database_ok else "degraded", "database": "connected" if database_ok else "unreachable"}


def run():
	"""Start the server; exits non-zero when config or the database is unusable."""
	critical = Config.critical_errors()
	if critical:
		for error in critical:
			logging.error(error)
		sys.exit(1)

	try:
		init_engine()
		db = SessionLocal()
		try:
			reachable = ping(db)
		finally:
			db.close()
	except SQLAlchemyError:
		logging.exception("app.startup database init failed")
		reachable = False
	if not reachable:
		logging.error("app.startup database unreachable url_dialect=%s", Config.get_database_url().split(":", 1)[0])
		sys.exit(1)

	uvicorn.run(app, host="0.0.0.0", port=Config.PORT)


if __name__ == "__main__":
	run()
