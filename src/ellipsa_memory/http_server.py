"""REST surface for Ellipsa Memory.

Capture agents post observations to ``/events``; the assistant queries
``/retrieve``. Everything answers with ``{"success": true, "data": ...}`` or
``{"success": false, "error": {...}}``.
"""

from contextlib import asynccontextmanager
from typing import Any

import pydantic
from fastapi import Body, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import settings
from .errors import DatabaseError, FieldIssue, NotFoundError, ValidationError
from .logging import configure_logging, get_logger
from .schemas.records import EventType, Participant, RelationshipType, TimeWindow
from .schemas.retrieval import RetrievalRequest
from .services.factory import MemoryServices, create_services
from .services.health import check_health
from .utils.correlation import generate_correlation_id, set_correlation_id
from .version import __version__

logger = get_logger("http_server")


class IngestRequest(BaseModel):
    content: str = ""
    type: EventType | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    participants: list[Participant] = Field(default_factory=list)
    audio: str | None = Field(default=None, description="Base64-encoded audio")


class MergeRequest(BaseModel):
    duplicate_ids: list[str] = Field(min_length=1)
    merge_metadata: bool = True


class StatusRequest(BaseModel):
    status: str


def _public(record: BaseModel) -> dict[str, Any]:
    return record.model_dump(mode="json", exclude={"embedding"})


def ok(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse({"success": True, "data": data}, status_code=status_code)


def _services(request: Request) -> MemoryServices:
    return request.app.state.services


def create_app(services: MemoryServices | None = None) -> FastAPI:
    """Build the app. Without ``services`` the lifespan creates and closes them."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.services is None
        if owned:
            app.state.services = await create_services(settings)
            await app.state.services.pipeline.start()
        logger.info("HTTP server started", version=__version__)
        try:
            yield
        finally:
            if owned:
                await app.state.services.close()
                app.state.services = None
            logger.info("HTTP server stopped")

    app = FastAPI(title="Ellipsa Memory", version=__version__, lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def correlation_middleware(request: Request, call_next):
        correlation_id = request.headers.get("x-correlation-id") or generate_correlation_id("http")
        set_correlation_id(correlation_id)
        response = await call_next(request)
        response.headers["x-correlation-id"] = correlation_id
        return response

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse({"success": False, "error": exc.to_dict()}, status_code=422)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        issues = [
            FieldIssue(
                field=".".join(str(part) for part in item["loc"] if part != "body") or "<input>",
                message=item["msg"],
            )
            for item in exc.errors()
        ]
        return JSONResponse(
            {"success": False, "error": ValidationError(issues).to_dict()}, status_code=422
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse({"success": False, "error": exc.to_dict()}, status_code=404)

    @app.exception_handler(DatabaseError)
    async def database_error_handler(request: Request, exc: DatabaseError):
        return JSONResponse({"success": False, "error": exc.to_dict()}, status_code=500)

    @app.get("/health")
    async def health(request: Request):
        report = await check_health(_services(request))
        return JSONResponse(report, status_code=503 if report["status"] == "error" else 200)

    # Events

    @app.post("/events")
    async def ingest_event(request: Request, payload: IngestRequest):
        metadata = dict(payload.metadata)
        if payload.type is not None:
            metadata["type"] = payload.type.value
        if payload.participants:
            metadata["participants"] = [p.model_dump(mode="json") for p in payload.participants]
        if payload.audio:
            metadata["audio"] = payload.audio

        result = await _services(request).pipeline.process_event(payload.content, metadata)
        return ok(
            {
                "event_id": result.event.id,
                "entity_ids": [entity.id for entity in result.entities],
                "task_ids": [task.id for task in result.tasks],
                "degraded": result.degraded,
            },
            status_code=201,
        )

    @app.get("/events")
    async def list_events(
        request: Request,
        page: int = 1,
        page_size: int = 10,
        sort_by: str | None = None,
        sort_order: str = "desc",
        type: str | None = None,
        start: str | None = None,
        end: str | None = None,
    ):
        time_window = None
        if start or end:
            try:
                time_window = TimeWindow.model_validate({"start": start, "end": end})
            except pydantic.ValidationError as e:
                raise ValidationError.from_pydantic(e, record_type="time_window") from e
        result = await _services(request).events.find_all(
            {"type": type} if type else None,
            time_window=time_window,
            page=page,
            page_size=page_size,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return ok(
            {
                "data": [_public(event) for event in result.data],
                "pagination": result.pagination.model_dump(),
            }
        )

    @app.get("/events/{event_id}")
    async def get_event(request: Request, event_id: str):
        return ok(_public(await _services(request).events.get(event_id)))

    # Entities

    @app.post("/entities")
    async def create_entity(request: Request, payload: dict[str, Any] = Body(...)):
        creation = await _services(request).entities.create_checked(payload)
        return ok(
            {
                "entity": _public(creation.entity),
                "duplicates": [
                    {"entity": _public(d.entity), "similarity": d.similarity}
                    for d in creation.duplicates
                ],
            },
            status_code=201,
        )

    @app.get("/entities/{entity_id}")
    async def get_entity(request: Request, entity_id: str, events_limit: int = 10):
        services = _services(request)
        entity = await services.entities.get(entity_id)
        recent_events = await services.events.find_by_participant(entity_id, limit=events_limit)
        return ok(
            {
                "entity": _public(entity),
                "recent_events": [_public(event) for event in recent_events],
            }
        )

    @app.patch("/entities/{entity_id}")
    async def update_entity(request: Request, entity_id: str, payload: dict[str, Any] = Body(...)):
        return ok(_public(await _services(request).entities.update(entity_id, payload)))

    @app.delete("/entities/{entity_id}")
    async def delete_entity(request: Request, entity_id: str, hard: bool = False):
        entities = _services(request).entities
        if hard:
            await entities.hard_delete(entity_id)
        else:
            await entities.delete(entity_id)
        return ok({"id": entity_id, "hard": hard})

    @app.get("/entities/{entity_id}/similar")
    async def similar_entities(
        request: Request,
        entity_id: str,
        limit: int = Query(default=10, ge=1, le=100),
        threshold: float | None = Query(default=None, ge=0, le=1),
    ):
        entities = _services(request).entities
        entity = await entities.get(entity_id)
        text = " ".join(part for part in (entity.name, entity.description) if part)
        matches = await entities.find_similar(text, limit=limit + 1, threshold=threshold)
        return ok(
            [
                {"entity": _public(m.entity), "similarity": m.similarity}
                for m in matches
                if m.entity.id != entity_id
            ][:limit]
        )

    @app.get("/entities/{entity_id}/relationships")
    async def entity_relationships(
        request: Request,
        entity_id: str,
        type: RelationshipType | None = None,
        direction: str = Query(default="both", pattern="^(both|incoming|outgoing)$"),
    ):
        entities = _services(request).entities
        await entities.get(entity_id)
        relationships = await entities.get_relationships(entity_id, type, direction)
        return ok([relationship.model_dump(mode="json") for relationship in relationships])

    @app.post("/entities/{entity_id}/merge")
    async def merge_entities(request: Request, entity_id: str, payload: MergeRequest):
        merged = await _services(request).entities.merge_entities(
            entity_id, payload.duplicate_ids, merge_metadata=payload.merge_metadata
        )
        return ok(_public(merged))

    @app.post("/relationships")
    async def create_relationship(request: Request, payload: dict[str, Any] = Body(...)):
        relationship = await _services(request).entities.create_relationship(payload)
        return ok(relationship.model_dump(mode="json"), status_code=201)

    @app.delete("/relationships/{relationship_id}")
    async def remove_relationship(request: Request, relationship_id: str):
        await _services(request).entities.remove_relationship(relationship_id)
        return ok({"id": relationship_id})

    # Tasks

    @app.post("/tasks")
    async def create_task(request: Request, payload: dict[str, Any] = Body(...)):
        return ok(_public(await _services(request).tasks.create(payload)), status_code=201)

    @app.get("/tasks/{task_id}")
    async def get_task(request: Request, task_id: str):
        return ok(_public(await _services(request).tasks.get(task_id)))

    @app.patch("/tasks/{task_id}/status")
    async def update_task_status(request: Request, task_id: str, payload: StatusRequest):
        return ok(_public(await _services(request).tasks.update_status(task_id, payload.status)))

    # Retrieval

    async def _retrieve(request: Request, payload: RetrievalRequest):
        results = await _services(request).retrieval.retrieve(payload.query, payload.to_options())
        return ok([result.model_dump(mode="json") for result in results])

    app.add_api_route("/retrieve", _retrieve, methods=["POST"])
    app.add_api_route("/search", _retrieve, methods=["POST"])

    return app


def main():
    """Run the REST API with uvicorn."""
    import uvicorn

    configure_logging()
    uvicorn.run(create_app(), host=settings.host, port=settings.http_port, log_config=None)


if __name__ == "__main__":
    main()
