import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from promptform.backend import FormService
from promptform.errors import PromptFormError, UploadTooLarge
from promptform.form_repository import build_form_repository
from promptform.google_helpers import (
    CORS_ORIGINS,
    GEMINI_MODEL,
    LLM_PROVIDER,
    LLM_RETRIES,
    LLM_TIMEOUT,
    MAX_UPLOAD_BYTES,
    PROJECT_ID,
    REGION,
    get_model_api_key,
    logger,
)
from promptform.llm_client import LlmClient, is_openai_model


class PromptRequest(BaseModel):
    prompt: Optional[Any] = None


class SuggestRequest(BaseModel):
    form: Optional[Any] = None


class ImageRequest(BaseModel):
    image: Optional[Any] = None
    mimeType: Optional[Any] = None
    context: Optional[Any] = None


class RefactorRequest(BaseModel):
    formJson: Optional[Any] = None
    command: Optional[Any] = None


class AnalyzeRequest(BaseModel):
    form: Optional[Any] = None
    responses: Optional[Any] = None
    formId: Optional[Any] = None


class SaveFormRequest(BaseModel):
    ownerId: Optional[Any] = None
    form: Optional[Any] = None
    formId: Optional[Any] = None


class FormMetaRequest(BaseModel):
    title: Optional[Any] = None
    theme: Optional[Any] = None


class DuplicateRequest(BaseModel):
    ownerId: Optional[Any] = None


def build_service() -> FormService:
    provider = LLM_PROVIDER or ("openai" if is_openai_model(GEMINI_MODEL) else "genai")
    # Vertex authenticates with application default credentials; the others need a key
    api_key = None if provider == "vertex" else get_model_api_key()
    llm = LlmClient(
        GEMINI_MODEL,
        api_key=api_key,
        provider=provider,
        vertex_project=PROJECT_ID,
        vertex_region=REGION,
        timeout=LLM_TIMEOUT,
        retries=LLM_RETRIES,
    )
    logger.info(f"[STARTUP] Model gateway ready: provider={provider} model={GEMINI_MODEL}")
    return FormService(llm, build_form_repository())


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def create_app(service: FormService | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "service", None) is None:
            app.state.service = build_service()
        yield

    app = FastAPI(title="PromptForm API", lifespan=lifespan)
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Summary-Warning", "Content-Disposition"],
    )

    def svc(request: Request) -> FormService:
        return request.app.state.service

    # -----------------------
    # Error mapping
    # -----------------------

    @app.exception_handler(PromptFormError)
    async def promptform_error_handler(request: Request, exc: PromptFormError):
        if exc.status_code >= 500:
            logger.error(f"[HTTP] {request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = [f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request.", "type": "invalid_input", "details": details},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"[HTTP] Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal server error.", "details": str(exc)})

    # -----------------------
    # Generation
    # -----------------------

    @app.post("/generate-form")
    async def generate_form(body: PromptRequest, request: Request):
        return await run_in_threadpool(svc(request).handle_generate_form, body.prompt)

    @app.post("/assist-question")
    async def assist_question(body: PromptRequest, request: Request):
        return await run_in_threadpool(svc(request).handle_assist_question, body.prompt)

    @app.post("/suggest-question")
    async def suggest_question(body: SuggestRequest, request: Request):
        return await run_in_threadpool(svc(request).handle_suggest_question, body.form)

    @app.post("/generate-form-from-image")
    async def generate_form_from_image(body: ImageRequest, request: Request):
        return await run_in_threadpool(
            svc(request).handle_generate_form_from_image, body.image, body.mimeType, body.context
        )

    @app.post("/generate-form-from-document")
    async def generate_form_from_document(
        request: Request,
        file: UploadFile = File(...),
        prompt: Optional[str] = Form(None),
        context: Optional[str] = Form(None),
    ):
        service = svc(request)
        data = await file.read(service.max_upload_bytes + 1)
        if len(data) > service.max_upload_bytes:
            raise UploadTooLarge(f"File exceeds the {service.max_upload_bytes} byte upload limit.")
        return await run_in_threadpool(
            service.handle_generate_form_from_document,
            data,
            file.content_type,
            file.filename,
            context or prompt,
        )

    @app.post("/refactor-form")
    async def refactor_form(body: RefactorRequest, request: Request):
        return await run_in_threadpool(svc(request).handle_refactor_form, body.formJson, body.command)

    @app.post("/analyze-responses")
    async def analyze_responses(body: AnalyzeRequest, request: Request):
        report, warning = await run_in_threadpool(
            svc(request).handle_analyze_responses, body.form, body.responses, body.formId
        )
        headers = {}
        if warning:
            headers["X-Summary-Warning"] = warning.encode("ascii", "replace").decode("ascii")
        return Response(content=report, media_type="text/markdown; charset=utf-8", headers=headers)

    # -----------------------
    # Forms & responses
    # -----------------------

    @app.post("/submit-response/{form_id}", status_code=201)
    async def submit_response(form_id: str, request: Request):
        try:
            body = await request.json()
        except ValueError:
            body = None
        metadata = {"userAgent": request.headers.get("user-agent"), "ip": _client_ip(request)}
        response_id = await run_in_threadpool(svc(request).handle_submit_response, form_id, body, metadata)
        return {"ok": True, "id": response_id}

    @app.delete("/forms/{form_id}")
    async def delete_form(form_id: str, request: Request):
        await run_in_threadpool(svc(request).handle_delete_form, form_id)
        return {"ok": True}

    @app.post("/forms")
    async def save_form(body: SaveFormRequest, request: Request):
        return await run_in_threadpool(svc(request).handle_save_form, body.ownerId, body.form, body.formId)

    @app.get("/forms")
    async def list_forms(request: Request, ownerId: Optional[str] = None):
        return await run_in_threadpool(svc(request).handle_list_forms, ownerId)

    @app.get("/forms/{form_id}")
    async def get_form(form_id: str, request: Request, opened: bool = False):
        return await run_in_threadpool(svc(request).handle_get_form, form_id, opened)

    @app.patch("/forms/{form_id}")
    async def update_form_meta(form_id: str, body: FormMetaRequest, request: Request):
        return await run_in_threadpool(svc(request).handle_update_form_meta, form_id, body.title, body.theme)

    @app.post("/forms/{form_id}/duplicate", status_code=201)
    async def duplicate_form(form_id: str, body: DuplicateRequest, request: Request):
        return await run_in_threadpool(svc(request).handle_duplicate_form, body.ownerId, form_id)

    @app.get("/forms/{form_id}/responses")
    async def list_responses(form_id: str, request: Request):
        return await run_in_threadpool(svc(request).handle_list_responses, form_id)

    @app.get("/forms/{form_id}/summary")
    async def form_summary(form_id: str, request: Request):
        return await run_in_threadpool(svc(request).handle_form_summary, form_id)

    @app.get("/forms/{form_id}/responses.csv")
    async def export_csv(form_id: str, request: Request):
        filename, text = await run_in_threadpool(svc(request).handle_export_csv, form_id)
        return StreamingResponse(
            iter([text]),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.get("/health")
    async def health():
        return {"status": "ok", "model": GEMINI_MODEL, "maxUploadBytes": MAX_UPLOAD_BYTES}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "3001")))
