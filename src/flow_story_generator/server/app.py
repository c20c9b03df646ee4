"""FastAPI app factory.

Endpoints are thin wrappers over the control surface: every call goes through
the message hub exactly like the CLI does.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from flow_story_generator import __version__
from flow_story_generator.automation.browser.session import BrowserSession
from flow_story_generator.automation.messaging.messages import (
    Accepted,
    ArtifactList,
    DownloadStatus,
    ScanResult,
)
from flow_story_generator.automation.runtime import FlowStoryRuntime
from flow_story_generator.automation.session.store import SessionSnapshot, SessionStore
from flow_story_generator.automation.workflow.models import ReferenceAsset, split_prompts
from flow_story_generator.server.config import ServerSettings
from flow_story_generator.server.models import (
    ApiStatus,
    DownloadRequest,
    SingleDownloadRequest,
    StartRunRequest,
)

logger = logging.getLogger(__name__)


def _unreachable(what: str) -> HTTPException:
    return HTTPException(status_code=503, detail=f"{what} did not answer")


def create_app(
    runtime: FlowStoryRuntime | None = None, settings: ServerSettings | None = None
) -> FastAPI:
    """Build the app.

    Without a `runtime`, the app attaches to the browser on startup and builds
    one for the Flow page it finds there.
    """

    settings = settings or ServerSettings()

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with contextlib.AsyncExitStack() as stack:
            active = runtime
            if active is None:
                browser = await stack.enter_async_context(BrowserSession(settings))
                active = FlowStoryRuntime(
                    browser.page, settings, change_source=browser.change_source
                )
            await stack.enter_async_context(active)
            app.state.runtime = active
            yield

    app = FastAPI(
        title="Flow Story Generator",
        version=__version__,
        description="Control surface for consistent-character story generation in Google Flow.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    session_store = SessionStore(settings.session_file)

    def _runtime(request: Request) -> FlowStoryRuntime:
        return request.app.state.runtime

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/status", response_model=ApiStatus)
    async def status(request: Request) -> ApiStatus:
        rt = _runtime(request)
        return ApiStatus(
            run=rt.controller.snapshot(),
            control=rt.control.status(),
            downloads=await rt.control.download_status(),
        )

    @app.delete("/api/logs", status_code=204)
    def clear_logs(request: Request) -> None:
        _runtime(request).control.clear_log()

    @app.post("/api/run/start", response_model=Accepted)
    async def start_run(request: Request, req: StartRunRequest) -> Accepted:
        rt = _runtime(request)
        # The session file is read and written off the loop the contexts share.
        saved = await asyncio.to_thread(session_store.load)
        if saved is None:
            saved = SessionSnapshot(settings=settings.run_settings())

        if req.prompts is not None:
            prompts = req.prompts
            prompt_text = "\n".join(req.prompts)
        else:
            prompt_text = req.prompts_text if req.prompts_text is not None else saved.prompts
            prompts = split_prompts(prompt_text)

        data_url = req.reference_asset or saved.reference_asset
        try:
            asset = ReferenceAsset.from_data_url(data_url) if data_url else None
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

        run_settings = req.settings or saved.settings
        await asyncio.to_thread(
            session_store.save,
            SessionSnapshot(
                reference_asset=data_url,
                prompts=prompt_text,
                settings=run_settings,
                filename_prefix=saved.filename_prefix,
            ),
        )

        accepted = await rt.control.start_run(prompts, asset, run_settings)
        if accepted is None:
            raise _unreachable("Workflow page")
        return accepted

    @app.post("/api/run/pause", response_model=Accepted)
    async def pause_run(request: Request) -> Accepted:
        accepted = await _runtime(request).control.pause_run()
        if accepted is None:
            raise _unreachable("Workflow page")
        return accepted

    @app.post("/api/run/resume", response_model=Accepted)
    async def resume_run(request: Request) -> Accepted:
        accepted = await _runtime(request).control.resume_run()
        if accepted is None:
            raise _unreachable("Workflow page")
        return accepted

    @app.post("/api/run/stop", response_model=Accepted)
    async def stop_run(request: Request) -> Accepted:
        accepted = await _runtime(request).control.stop_run()
        if accepted is None:
            raise _unreachable("Workflow page")
        return accepted

    @app.get("/api/artifacts", response_model=ArtifactList)
    async def list_artifacts(request: Request) -> ArtifactList:
        artifacts = await _runtime(request).control.get_artifacts()
        if artifacts is None:
            raise _unreachable("Workflow page")
        return ArtifactList(artifacts=artifacts)

    @app.post("/api/downloads", response_model=Accepted)
    async def start_downloads(request: Request, req: DownloadRequest) -> Accepted:
        delay = req.delay_seconds
        if delay is None:
            delay = settings.download_delay_seconds
        return await _runtime(request).control.download_all(prefix=req.prefix, delay_seconds=delay)

    @app.post("/api/downloads/single", response_model=Accepted)
    async def download_single(request: Request, req: SingleDownloadRequest) -> Accepted:
        accepted = await _runtime(request).control.download_single(req.locator, req.filename)
        if accepted is None:
            raise _unreachable("Download queue")
        return accepted

    @app.get("/api/downloads", response_model=DownloadStatus)
    async def download_status(request: Request) -> DownloadStatus:
        current = await _runtime(request).control.download_status()
        if current is None:
            raise _unreachable("Download queue")
        return current

    @app.post("/api/scan", response_model=ScanResult)
    async def scan(request: Request) -> ScanResult:
        result = await _runtime(request).control.scan_page()
        if result is None:
            raise _unreachable("Workflow page")
        return result

    @app.get("/api/session", response_model=SessionSnapshot)
    def get_session() -> SessionSnapshot:
        return session_store.load() or SessionSnapshot(settings=settings.run_settings())

    @app.put("/api/session", response_model=SessionSnapshot)
    def put_session(snapshot: SessionSnapshot) -> SessionSnapshot:
        if snapshot.reference_asset:
            try:
                ReferenceAsset.from_data_url(snapshot.reference_asset)
            except ValueError as e:
                raise HTTPException(status_code=422, detail=str(e)) from e
        session_store.save(snapshot)
        logger.info("Session saved", extra={"path": str(settings.session_file)})
        return snapshot

    return app
