# tryon/adapters/web/fastapi.py
import asyncio
import json
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Optional

from fastapi import FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles

from tryon.adapters.notifier_broadcast import BroadcastNotifier
from tryon.core.exceptions import InputValidationError, TryOnError, UpstreamHttpError
from tryon.core.interfaces.http_client import HttpClientPort
from tryon.core.logging_config import correlation_id_var
from tryon.core.managers.tryon_manager import TryOnManager
from tryon.core.models.job import JobList, JobStatusView
from tryon.core.models.problem import ProblemResponse
from tryon.core.models.quota import QuotaAllowance
from tryon.core.models.webhook import ManualWebhookRequest
from tryon.core.settings import logger

SSE_HEARTBEAT_SECONDS = 15.0


# Driver adapter: depends on the core manager, implements no port itself
def create_app(
    manager_factory: Callable[[HttpClientPort], TryOnManager],
    http_client: HttpClientPort,
    notifier: Optional[BroadcastNotifier] = None,
    artifact_dir: Optional[str] = None,
):
    """Create the FastAPI app.

    Adapters and concrete infrastructure (stores, notifier, logging) are
    assembled by the composition root and handed in; the manager is built
    inside the lifespan once the HTTP client session is open.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with http_client as client:
            manager = manager_factory(client)
            app.state.manager = manager
            await manager.start()
            try:
                yield
            finally:
                await manager.shutdown()

    app = FastAPI(title="Try-On Gateway", lifespan=lifespan)

    def render_problem(
        problem: ProblemResponse,
        *,
        include_request_id: bool = False,
    ) -> JSONResponse:
        payload = jsonable_encoder(problem.model_dump(exclude_none=True))
        response = JSONResponse(status_code=problem.status, content=payload)
        if include_request_id and problem.additional and problem.additional.requestId:
            response.headers["X-Request-ID"] = problem.additional.requestId
        return response

    def problem_response(problem: ProblemResponse) -> JSONResponse:
        # requestId only surfaces for server side / upstream failures
        include_request_id = problem.status >= 500
        if include_request_id:
            problem = problem.with_request_id(correlation_id_var.get())
        return render_problem(problem, include_request_id=include_request_id)

    # Correlation ID middleware: per-request id (header override) exposed to logging
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        incoming = request.headers.get("x-request-id")
        cid = incoming or uuid.uuid4().hex[:12]
        token = correlation_id_var.set(cid)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers["X-Request-ID"] = cid
        return response

    @app.exception_handler(TryOnError)
    async def tryon_exception_handler(request: Request, exc: TryOnError):
        if exc.status >= 500:
            logger.error(f"[http] {exc.title} path={request.url.path} detail={exc.message} diagnostic={exc.diagnostic}")
        else:
            logger.info(f"[http] {exc.title} path={request.url.path} detail={exc.message}")
        return problem_response(exc.to_problem(instance=str(request.url)))

    @app.exception_handler(UpstreamHttpError)
    async def upstream_exception_handler(request: Request, exc: UpstreamHttpError):
        return problem_response(exc.response.model_copy(update={"instance": str(request.url)}))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        detail = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', [])) or 'body'}: {err.get('msg', 'invalid value')}"
            for err in exc.errors()
        )
        problem = InputValidationError(detail or "Invalid request").to_problem(instance=str(request.url))
        return render_problem(problem)

    async def read_json(request: Request):
        try:
            return await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None

    if artifact_dir:
        Path(artifact_dir).mkdir(parents=True, exist_ok=True)
        app.mount("/artifacts", StaticFiles(directory=artifact_dir), name="artifacts")

    @app.get("/health")
    async def health():
        manager: TryOnManager = app.state.manager
        return {
            "status": "ok",
            "activePolls": manager.watcher.active_polls,
            "subscribers": notifier.subscriber_count if notifier else 0,
        }

    @app.post("/tryon", status_code=201)
    async def submit_tryon(request: Request):
        raw = await read_json(request)
        if raw is None:
            raise InputValidationError("Request body must be valid JSON")
        job = await app.state.manager.submit_job(raw)
        response = JSONResponse(
            status_code=201,
            content={"jobID": job.id, "status": job.status.value, "providerJobID": job.provider_job_id},
        )
        response.headers["Location"] = f"/jobs/{job.id}"
        return response

    @app.get("/jobs", response_model=JobList, response_model_exclude_none=True)
    async def list_jobs(status: Optional[str] = Query(default=None), scope: Optional[str] = Query(default=None)):
        views = await app.state.manager.list_jobs(status=status, scope=scope)
        return JobList(jobs=views)

    @app.get("/jobs/{job_id}", response_model=JobStatusView, response_model_exclude_none=True)
    async def get_job(job_id: str):
        return await app.state.manager.get_job_status(job_id)

    @app.post("/webhook")
    async def webhook(request: Request, job_id: Optional[str] = Query(default=None)):
        # Always acknowledge; the provider must never retry because of our state
        raw = await read_json(request)
        outcome = await app.state.manager.handle_webhook(raw or {}, job_id=job_id)
        logger.debug(f"[webhook] job_id={job_id} outcome={outcome}")
        return {"success": True}

    @app.post("/manual-webhook", response_model=JobStatusView, response_model_exclude_none=True)
    async def manual_webhook(body: ManualWebhookRequest):
        return await app.state.manager.handle_manual_webhook(body)

    @app.get("/trials", response_model=QuotaAllowance)
    async def get_trials(scope: str = Query(default="global")):
        return await app.state.manager.get_allowance(scope)

    @app.put("/trials", response_model=QuotaAllowance)
    async def put_trials(body: QuotaAllowance):
        return await app.state.manager.set_allowance(body.scope, body.remainingTrials)

    @app.get("/events")
    async def events(request: Request):
        if notifier is None:
            return render_problem(
                ProblemResponse(
                    title="Events Not Supported",
                    status=404,
                    detail="No event stream configured for this deployment",
                    instance=str(request.url),
                )
            )

        async def stream():
            async with notifier.subscribe() as queue:
                yield ": connected\n\n"
                while not await request.is_disconnected():
                    try:
                        event = await asyncio.wait_for(queue.get(), timeout=SSE_HEARTBEAT_SECONDS)
                    except asyncio.TimeoutError:
                        yield ": keep-alive\n\n"
                        continue
                    yield f"event: {event.type}\ndata: {event.model_dump_json()}\n\n"

        return StreamingResponse(
            stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    return app
