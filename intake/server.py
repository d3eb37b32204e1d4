import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from common.errors import (
    InvalidRequest,
    NotFound,
    PipelineError,
    QueueUnavailable,
    StoreUnavailable,
)
from common.logger import get_logger
from dispatch.queue import WorkQueue
from dispatch.rabbit import RabbitMQClient
from intake.models import (
    ErrorResponse,
    JobCreatedResponse,
    JobResponse,
    SubmitJobRequest,
)
from intake.service import IntakeService
from jobs.redis_store import RedisJobStore
from jobs.store import JobStore


def _error(status_code: int, exc: Exception) -> JSONResponse:
    body = ErrorResponse(error=type(exc).__name__, detail=str(exc))
    return JSONResponse(status_code=status_code, content=body.model_dump())


class Server:
    def __init__(
            self,
            store: Optional[JobStore] = None,
            queue: Optional[WorkQueue] = None,
    ) -> None:
        self._logger = get_logger(__name__)
        self._store = store if store is not None else RedisJobStore()
        self._queue = queue if queue is not None else RabbitMQClient()
        self._service = IntakeService(self._store, self._queue)

        self.app = FastAPI(title="Screenshot jobs", lifespan=self._lifespan)
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept"],
        )
        self.app.middleware("http")(self._log_request)

        self.register_exception_handlers()
        self.register_routes()

    @property
    def service(self) -> IntakeService:
        return self._service

    @asynccontextmanager
    async def _lifespan(self, _app: FastAPI):
        await self._store.connect()
        await self._queue.connect()
        self._logger.info("API up and running")

        yield

        await self._queue.disconnect()
        await self._store.disconnect()
        self._logger.info("Disconnected from job store and work queue")

    async def _log_request(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        self._logger.info(
            "%s %s %d - %.1f ms",
            request.method, request.url.path, response.status_code, elapsed_ms,
        )
        return response

    def register_exception_handlers(self) -> None:
        @self.app.exception_handler(RequestValidationError)
        async def on_validation_error(_request: Request, exc: RequestValidationError):
            return _error(400, InvalidRequest(str(exc.errors())))

        @self.app.exception_handler(InvalidRequest)
        async def on_invalid_request(_request: Request, exc: InvalidRequest):
            self._logger.warning("Rejected request: %s", exc)
            return _error(400, exc)

        @self.app.exception_handler(NotFound)
        async def on_not_found(_request: Request, exc: NotFound):
            self._logger.warning("Job %s not found", exc.job_id)
            return _error(400, exc)

        @self.app.exception_handler(StoreUnavailable)
        @self.app.exception_handler(QueueUnavailable)
        async def on_unavailable(_request: Request, exc: PipelineError):
            self._logger.error("Backend unavailable: %s", exc)
            return _error(503, exc)

        @self.app.exception_handler(PipelineError)
        async def on_pipeline_error(_request: Request, exc: PipelineError):
            self._logger.error("Unexpected pipeline error: %s", exc)
            return _error(500, exc)

    def register_routes(self) -> None:
        @self.app.get(
            "/",
            response_class=PlainTextResponse,
            summary="Liveness check for the load balancer",
        )
        async def health() -> PlainTextResponse:
            return PlainTextResponse("Up and running!")

        @self.app.post(
            "/job",
            response_model=JobCreatedResponse,
            responses={
                400: {"model": ErrorResponse},
                503: {"model": ErrorResponse},
            },
            summary="Submit a URI to be screenshot",
            tags=["Jobs"],
        )
        async def submit_job(request: SubmitJobRequest) -> JobCreatedResponse:
            job_id = await self._service.submit(request.uri)
            return JobCreatedResponse(id=job_id)

        @self.app.get(
            "/job/{job_id}",
            response_model=JobResponse,
            response_model_exclude_none=True,
            responses={
                400: {"model": ErrorResponse},
                503: {"model": ErrorResponse},
            },
            summary="Get the status of a job using its job id",
            tags=["Jobs"],
        )
        async def get_job(job_id: str) -> JobResponse:
            job = await self._service.get_status(job_id)
            return JobResponse.model_validate(job.to_record())
