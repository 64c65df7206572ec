import logging
import random
from typing import Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from PIL import Image

from mediscan import config
from mediscan.analyzer import analyze
from mediscan.errors import ImageDecodeError, RemoteAnalysisError, RenderError
from mediscan.remote import analyze_remote
from mediscan.schemas import AnalysisReport, HeatmapResponse
from mediscan.utils import encode_image, encode_image_to_data_url, load_image, mime_type_for

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="MediScan Analyzer API")

HEURISTIC_EXPLANATION = (
    "Heuristic grid scan of the circular organ area (brightness/contrast rules) "
    "with severity-weighted radial heatmap overlays."
)
REMOTE_EXPLANATION = "Model used: Gemini Vision API, heatmap rendered from the model's findings."


# ----- Error handlers -----
@app.exception_handler(ImageDecodeError)
async def handle_decode_error(request: Request, exc: ImageDecodeError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(RenderError)
async def handle_render_error(request: Request, exc: RenderError):
    logger.error("Heatmap rendering failed: %s", exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.exception_handler(RemoteAnalysisError)
async def handle_remote_error(request: Request, exc: RemoteAnalysisError):
    return JSONResponse(status_code=502, content={"detail": str(exc)})


# ----- Helper functions -----
def build_response(source: Image.Image, heatmap: Image.Image, report: AnalysisReport,
                   engine: str, explanation: str) -> HeatmapResponse:
    """Encode the heatmap in the source's container format and wrap it with the report."""
    fmt = source.format or "PNG"
    heatmap_bytes = encode_image(heatmap, fmt)
    return HeatmapResponse(
        heatmap_data_uri=encode_image_to_data_url(heatmap_bytes, mime=mime_type_for(fmt)),
        analysis=report,
        engine=engine,
        width=heatmap.width,
        height=heatmap.height,
        generation_explanation=explanation,
    )


def run_local(image: Image.Image, cell_size: int, seed: Optional[int]) -> HeatmapResponse:
    rng = random.Random(seed) if seed is not None else None
    heatmap, report = analyze(image, roi_cell_size_px=cell_size, rng=rng)
    return build_response(image, heatmap, report, "heuristic", HEURISTIC_EXPLANATION)


# ----- Endpoints -----
@app.get("/")
def health_check():
    return {"status": "ok"}


@app.post("/analyze", response_model=HeatmapResponse)
def analyze_image(
    file: UploadFile = File(...),
    cell_size: int = Form(config.CELL_SIZE, gt=0),
    seed: Optional[int] = Form(None),
):
    contents = file.file.read()
    image = load_image(contents)
    return run_local(image, cell_size, seed)


@app.post("/analyze/remote", response_model=HeatmapResponse)
def analyze_image_remote(
    file: UploadFile = File(...),
    description: str = Form(""),
    fallback: bool = Form(True),
):
    contents = file.file.read()
    image = load_image(contents)

    try:
        heatmap, report = analyze_remote(image, description)
    except RemoteAnalysisError as e:
        if not fallback:
            raise
        logger.warning("Remote analysis failed, using heuristic fallback. Error: %s", e)
        return run_local(image, config.CELL_SIZE, None)

    return build_response(image, heatmap, report, "gemini", REMOTE_EXPLANATION)
