"""
FastAPI Server for Plan Raster Processing

Provides REST endpoints that resolve the drawing scale of a scanned plan,
remove printed text regions and return the cleaned raster.
"""

import json
import logging
import os
from typing import Optional, Any, Dict

from fastapi import FastAPI, HTTPException, UploadFile, File, Form
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import numpy as np

from plan_raster import __version__
from plan_raster.config import PipelineConfig
from plan_raster.errors import ConfigurationError, ImageLoadError, PlanRasterError
from plan_raster.inference import create_inference_backend, create_text_extractor
from plan_raster.processing import PlanPipeline, PipelineResult
from plan_raster.raster import RasterImage, image_from_base64, image_to_base64, raster_from_bytes


class NumpyEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles numpy types"""
    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.bool_):
            return bool(obj)
        return super().default(obj)


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class Base64ImageRequest(BaseModel):
    """Request body for base64-encoded plan processing"""
    image: str  # Base64-encoded image (with or without data URL prefix)
    dpi: Optional[float] = None  # Overrides image metadata
    scale_text: Optional[str] = None  # Scale text the caller already knows
    include_output_image: bool = True

    # Optional configuration overrides
    composite_mode: Optional[str] = None
    tile_size: Optional[int] = None
    overlap: Optional[int] = None
    dedup_tolerance_px: Optional[float] = None


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    backend: str
    ocr: str


def _status_for(error: PlanRasterError) -> int:
    if isinstance(error, (ConfigurationError, ImageLoadError)):
        return 400
    return 500


def _config_for(overrides: Dict[str, Any], dpi: Optional[float]) -> PipelineConfig:
    data = PipelineConfig.default().to_dict()
    data.update({k: v for k, v in overrides.items() if v is not None})
    if dpi is not None:
        data["assumed_scan_dpi"] = dpi
    return PipelineConfig.from_dict(data)


def _response(result: PipelineResult, include_output_image: bool) -> JSONResponse:
    output = result.to_dict()
    if include_output_image and result.output is not None:
        output["output_image"] = image_to_base64(result.output)
    # Use custom encoder to handle numpy types
    json_str = json.dumps(output, cls=NumpyEncoder)
    return JSONResponse(content=json.loads(json_str))


def create_app(backend: Optional[str] = None, ocr: Optional[str] = None) -> FastAPI:
    """
    Build the API.

    Backends are chosen once here, from arguments or the PLAN_RASTER_BACKEND
    and PLAN_RASTER_OCR environment variables.
    """
    backend = backend or os.environ.get("PLAN_RASTER_BACKEND", "null")
    ocr = ocr or os.environ.get("PLAN_RASTER_OCR", "tesseract")
    inference_backend = create_inference_backend(backend)
    text_extractor = create_text_extractor(ocr)

    app = FastAPI(
        title="Plan Raster API",
        description="Scale resolution, tiling and text removal for scanned construction plans",
        version=__version__,
    )

    # Add CORS middleware for frontend access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def run_job(image: RasterImage, config: PipelineConfig, scale_text: Optional[str]) -> PipelineResult:
        pipeline = PlanPipeline(config, inference_backend=inference_backend, text_extractor=text_extractor)
        try:
            return pipeline.run(image, supplied_scale_text=scale_text)
        except PlanRasterError as e:
            logger.error(f"Processing error: {e.message}")
            raise HTTPException(status_code=_status_for(e), detail=e.to_dict())

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint"""
        return HealthResponse(status="healthy", version=__version__, backend=backend, ocr=ocr)

    @app.get("/process/config")
    async def get_default_config():
        """Get the default pipeline configuration"""
        return PipelineConfig.default().to_dict()

    @app.post("/process")
    def process_base64(request: Base64ImageRequest):
        """
        Process a base64-encoded plan image.

        Returns the resolved scale, retained regions, tile statistics, a
        quality indicator and (optionally) the output image as base64 PNG.
        """
        logger.info("Received processing request")
        try:
            overrides = {
                "composite_mode": request.composite_mode,
                "tile_size": request.tile_size,
                "overlap": request.overlap,
                "dedup_tolerance_px": request.dedup_tolerance_px,
            }
            config = _config_for(overrides, request.dpi)
            image = image_from_base64(request.image, dpi=request.dpi)
        except PlanRasterError as e:
            raise HTTPException(status_code=_status_for(e), detail=e.to_dict())

        logger.info(f"Image decoded: {image.width}x{image.height}")
        result = run_job(image, config, request.scale_text)
        return _response(result, request.include_output_image)

    @app.post("/process/upload")
    def process_upload(
        file: UploadFile = File(...),
        dpi: Optional[float] = Form(None),
        scale_text: Optional[str] = Form(None),
        composite_mode: Optional[str] = Form(None),
        include_output_image: bool = Form(False),
    ):
        """
        Process an uploaded plan image file.

        Accepts PNG, JPEG and TIFF files.
        """
        logger.info(f"Received file upload: {file.filename}")
        try:
            config = _config_for({"composite_mode": composite_mode}, dpi)
            image = raster_from_bytes(file.file.read(), dpi=dpi, source=file.filename)
        except PlanRasterError as e:
            raise HTTPException(status_code=_status_for(e), detail=e.to_dict())

        logger.info(f"Image decoded: {image.width}x{image.height}")
        result = run_job(image, config, scale_text)
        return _response(result, include_output_image)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
