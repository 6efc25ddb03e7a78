from fastapi import FastAPI, HTTPException, Request
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Dict, Any, List
import logging

from utils import config

# Configure logging
logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

from services.llm_service import LLMService, LLMServiceError
from services.workflow_synthesizer import WorkflowSynthesizer, SynthesisResult
from services.graph_assembler import GraphAssemblyError
from services.connection_normalizer import normalize_connections, connections_to_dict
from services.workflow_validator import StructuralValidator
from schemas.fragment_schema import MergePoint
from schemas.workflow_graph import ValidationReport
from translators.n8n_translator import N8nWorkflowTranslator


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up Workflow Synthesis API...")
    logger.info(f"Model: {config.OPENAI_MODEL}, fragment concurrency: {config.FRAGMENT_CONCURRENCY}")
    if not config.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY is not set; /synthesize-workflow will fail until it is")
    yield
    logger.info("Shutting down Workflow Synthesis API...")


app = FastAPI(
    title="Workflow Synthesis API",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS - Simplified for local use
allowed_origins = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://localhost:5678",
]

logger.info(f"CORS enabled for origins: {allowed_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error for {request.url}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": f"Validation error: {exc.errors()}"})


# Initialize services
llm_service = LLMService()
synthesizer = WorkflowSynthesizer(llm_service=llm_service)
validator = StructuralValidator()
translator = N8nWorkflowTranslator()


# ============================================================================
# REQUEST MODELS
# ============================================================================

class SynthesizeRequest(BaseModel):
    prompt: str = Field(min_length=1)
    name: str = "Generated Workflow"

class FragmentInput(BaseModel):
    name: str
    fragment: Any = None

class AssembleRequest(BaseModel):
    name: str = "Generated Workflow"
    fragments: List[FragmentInput] = Field(default_factory=list)
    merge_points: List[MergePoint] = Field(default_factory=list)

class ValidateRequest(BaseModel):
    workflow: Dict[str, Any]

class NormalizeRequest(BaseModel):
    connections: Dict[str, Any]


# ============================================================================
# ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    return {"message": "Workflow Synthesis API is running"}

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "model": config.OPENAI_MODEL,
        "llm_configured": bool(config.OPENAI_API_KEY),
    }

@app.post("/synthesize-workflow", response_model=SynthesisResult)
async def synthesize_workflow(request: SynthesizeRequest):
    """Plan, generate and repair a workflow from a natural-language request"""
    try:
        logger.info(f"Synthesizing workflow '{request.name}'")
        return await synthesizer.synthesize(request.prompt, request.name)
    except LLMServiceError as e:
        logger.error(f"Model error during synthesis: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except GraphAssemblyError as e:
        logger.error(f"Assembly failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

@app.post("/assemble-workflow", response_model=SynthesisResult)
async def assemble_workflow(request: AssembleRequest):
    """Repair and assemble fragments supplied by the caller; no model calls"""
    try:
        fragments = [(f.name, f.fragment) for f in request.fragments]
        return synthesizer.synthesize_from_fragments(fragments, request.merge_points, request.name)
    except GraphAssemblyError as e:
        logger.error(f"Assembly failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

@app.post("/validate-workflow", response_model=ValidationReport)
async def validate_workflow(request: ValidateRequest):
    graph = translator.from_workflow_json(request.workflow)
    return validator.validate(graph)

@app.post("/normalize-connections")
async def normalize_connection_map(request: NormalizeRequest):
    normalization = normalize_connections(request.connections)
    return {
        "connections": connections_to_dict(normalization.connections),
        "rejected": normalization.rejected,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
