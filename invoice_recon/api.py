"""
FastAPI endpoints for invoice extraction and reconciliation.
"""

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

import logging

from invoice_recon.adapter import check_connectivity
from invoice_recon.config import Settings, load_settings
from invoice_recon.pipeline import EmptyBatchError, InvoicePipeline, UploadedDocument, build_pipeline
from invoice_recon.validator import validate_payload

logger = logging.getLogger(__name__)


def create_app(pipeline: Optional[InvoicePipeline] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        pipeline: Pre-built pipeline (tests inject one); built from settings otherwise.
        settings: Settings; read from the environment when omitted.
    """
    settings = settings or load_settings()
    app = FastAPI(title="Invoice Reconciliation API", version="1.0.0")
    app.state.settings = settings
    app.state.pipeline = pipeline or build_pipeline(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health(request: Request, deep: bool = False) -> Dict[str, Any]:
        """
        Health check endpoint.

        With `deep=1` the external extraction service is probed as well.
        """
        body: Dict[str, Any] = {"ok": True}
        if deep:
            current: InvoicePipeline = request.app.state.pipeline
            adapter = current.adapter
            if adapter is None:
                body["ai"] = {"ok": False, "keyPlausible": False, "error": "NOT_CONFIGURED"}
            else:
                cfg: Settings = request.app.state.settings
                body["ai"] = await run_in_threadpool(check_connectivity, adapter.client, cfg.health_models,
                                                     cfg.api_versions, timeout=cfg.health_timeout)
        return body

    @app.post("/api/extract")
    async def extract(request: Request, files: Optional[List[UploadFile]] = File(None),
                      debug: bool = False) -> Dict[str, Any]:
        """
        Extract products, customers and invoices from uploaded files.

        Args:
            files: Uploaded spreadsheets, PDFs, text files or images.
            debug: Include the `_debug` trail in the response.

        Returns:
            Normalized payload with `products`, `customers` and `invoices`.
        """
        if not files:
            raise HTTPException(status_code=400, detail="No files uploaded")

        max_size = request.app.state.settings.max_upload_size
        documents = []
        for file in files:
            content = await file.read()
            if len(content) > max_size:
                raise HTTPException(status_code=413, detail=f"File '{file.filename}' exceeds maximum size of {max_size} bytes")
            documents.append(UploadedDocument(file.filename or 'upload', file.content_type or '', content))

        try:
            return await run_in_threadpool(request.app.state.pipeline.extract_from_files, documents, debug=debug)
        except EmptyBatchError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            logger.exception("Extraction request failed")
            raise HTTPException(status_code=500, detail=str(e) or "Extraction failed")

    @app.post("/api/validate")
    async def validate(payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate a normalized payload.

        Returns:
            Validation result from validate_payload.
        """
        try:
            return validate_payload(payload)
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Validation error: {str(e)}")

    return app


app = create_app()
