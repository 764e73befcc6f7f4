"""Decomposition service: model call -> validation -> repair -> scoring.

``DecompositionService.decompose`` runs one analysis:

1. Fingerprint the request and return a cached analysis when one exists.
2. Ask the model for a step/gap graph and pull the JSON out of its reply.
3. Pass the JSON through the schema gate (``RawDecomposition``). A payload
   that fails the gate is rejected; it is not retried.
4. Repair the graph, score it, and wrap it in a new immutable Decomposition.
5. Cache the analysis and record it in the workflow store.

Cache and store faults never fail a request; model and schema failures do.
"""

import time
from uuid import uuid4

import structlog
from pydantic import ValidationError

from analysis import compute_health, repair_decomposition
from analysis_cache import AnalysisCache, compute_analysis_hash
from llm import (
    DECOMPOSE_SYSTEM_PROMPT,
    PROMPT_VERSION,
    LLMClient,
    build_decompose_prompt,
    extract_json_from_response,
)
from models.schemas import (
    DecomposeMetadata,
    DecomposeRequest,
    DecomposeResult,
    Decomposition,
    RawDecomposition,
)
from workflow_store import WorkflowStore

logger = structlog.get_logger(__name__)


class DecompositionError(Exception):
    """Raised when the model's output cannot be turned into a decomposition."""


class DecompositionParseError(DecompositionError):
    """Raised when no JSON object can be extracted from the model's reply."""


class DecompositionValidationError(DecompositionError):
    """Raised when the model's JSON fails the decomposition schema.

    Attributes:
        errors: Pydantic error details for the rejected payload.
    """

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


def generate_id() -> str:
    """Return a new decomposition/workflow id."""
    return str(uuid4())


class DecompositionService:
    """Runs decompositions against a model, with caching and persistence.

    Attributes:
        llm_client: Client used for the model call.
        cache: Optional analysis cache; None disables caching.
        workflow_store: Optional store recording every decomposition.
        model: Model identifier, also part of the cache fingerprint.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        cache: AnalysisCache | None = None,
        workflow_store: WorkflowStore | None = None,
        model: str | None = None,
    ) -> None:
        self.llm_client = llm_client
        self.cache = cache
        self.workflow_store = workflow_store
        self.model = model or llm_client.default_model

    async def decompose(self, request: DecomposeRequest) -> DecomposeResult:
        """Decompose a workflow description into a repaired, scored graph.

        Args:
            request: Description, optional stages/context/team size, and an
                optional parent id when this is a re-analysis.

        Returns:
            DecomposeResult with the new Decomposition and its metadata.

        Raises:
            DecompositionParseError: If the model reply contains no JSON object.
            DecompositionValidationError: If the JSON fails the schema gate.
            Exception: Model transport errors from the LLM client.
        """
        fingerprint = compute_analysis_hash(request, PROMPT_VERSION, self.model)

        result: DecomposeResult | None = None
        if self.cache is not None and not request.skip_cache:
            entry = await self.cache.get(fingerprint)
            if entry is not None:
                decomposition = entry.decomposition.model_copy(
                    update={"id": generate_id(), "parent_id": request.parent_id}
                )
                metadata = entry.metadata.model_copy(update={"cache_hit": True})
                result = DecomposeResult(decomposition=decomposition, metadata=metadata)
                logger.info(
                    "decomposition_served_from_cache",
                    fingerprint=fingerprint,
                    hit_count=entry.hit_count,
                )

        if result is None:
            result = await self._analyze(request)
            if self.cache is not None:
                await self.cache.set(fingerprint, result.decomposition, result.metadata)

        if self.workflow_store is not None:
            try:
                await self.workflow_store.record(
                    result.decomposition,
                    request.description,
                    request.cost_context,
                )
            except Exception as e:
                logger.error(
                    "workflow_record_failed",
                    decomposition_id=result.decomposition.id,
                    error=str(e),
                )

        return result

    async def _analyze(self, request: DecomposeRequest) -> DecomposeResult:
        start_time = time.time()
        response = await self.llm_client.call(
            messages=[
                {"role": "system", "content": DECOMPOSE_SYSTEM_PROMPT},
                {"role": "user", "content": build_decompose_prompt(request)},
            ],
            model=self.model,
        )

        payload = extract_json_from_response(response.content)
        if payload is None:
            logger.error(
                "decomposition_parse_failed",
                content_preview=response.content[:200],
            )
            raise DecompositionParseError("Could not extract JSON from the model response")

        try:
            raw = RawDecomposition.model_validate(payload)
        except ValidationError as e:
            logger.error("decomposition_validation_failed", error_count=e.error_count())
            raise DecompositionValidationError(
                "Model response does not match the decomposition schema",
                errors=e.errors(
                    include_url=False, include_context=False, include_input=False
                ),
            ) from e

        repaired = repair_decomposition(raw.steps, raw.gaps)
        health = compute_health(repaired.steps, repaired.gaps, request.team_size)

        decomposition = Decomposition(
            id=generate_id(),
            title=raw.title,
            steps=repaired.steps,
            gaps=repaired.gaps,
            health=health,
            parent_id=request.parent_id,
        )
        metadata = DecomposeMetadata(
            prompt_version=PROMPT_VERSION,
            model_used=response.metrics.model,
            input_tokens=response.metrics.input_tokens,
            output_tokens=response.metrics.output_tokens,
            latency_ms=int((time.time() - start_time) * 1000),
        )

        logger.info(
            "decomposition_complete",
            decomposition_id=decomposition.id,
            step_count=len(decomposition.steps),
            gap_count=len(decomposition.gaps),
            repaired=repaired.report.changed,
            complexity=health.complexity,
            fragility=health.fragility,
        )
        return DecomposeResult(decomposition=decomposition, metadata=metadata)
