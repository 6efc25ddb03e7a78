"""
Workflow Synthesizer

Orchestrates staged generation: plan, generate one fragment per branch
concurrently, then the synchronous pipeline

    parse -> repair fragments -> assemble -> reconnect -> validate -> export

Recoverable problems become warnings in the result; only a
GraphAssemblyError escapes `synthesize_from_fragments`.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from schemas.fragment_schema import BranchPlan, MergePoint, RepairAction, WorkflowPlan
from schemas.workflow_graph import (
    WorkflowGraph, ValidationIssue, ValidationReport, IssueKind, Severity
)
from services.connectivity_repairer import GlobalConnectivityRepairer
from services.fragment_parser import parse_fragment
from services.fragment_repairer import FragmentRepairer
from services.graph_assembler import GraphAssembler
from services.llm_service import LLMService, LLMServiceError, LLMConfigurationError
from services.workflow_validator import StructuralValidator
from translators.n8n_translator import N8nWorkflowTranslator
from utils import config

logger = logging.getLogger(__name__)

FALLBACK_BRANCH = "Main Flow"


class SynthesisResult(BaseModel):
    workflow: Dict[str, Any]
    graph: WorkflowGraph
    report: ValidationReport
    diagnostics: List[ValidationIssue] = Field(default_factory=list)
    repairs: List[RepairAction] = Field(default_factory=list)
    success: bool = False


class WorkflowSynthesizer:
    """
    One instance can serve many requests; every call builds a fresh graph.
    """

    def __init__(self, llm_service: Optional[LLMService] = None, concurrency: Optional[int] = None):
        self.llm_service = llm_service or LLMService()
        self.concurrency = max(1, concurrency or config.FRAGMENT_CONCURRENCY)
        self.repairer = FragmentRepairer()
        self.assembler = GraphAssembler()
        self.connectivity = GlobalConnectivityRepairer()
        self.validator = StructuralValidator()
        self.translator = N8nWorkflowTranslator()

    # ---------- Async entry point ----------

    async def synthesize(self, prompt: str, name: str = "Generated Workflow") -> SynthesisResult:
        plan = await self._plan(prompt)
        fragments, diagnostics = await self._generate_fragments(plan.branches, prompt)

        result = self.synthesize_from_fragments(fragments, plan.merge_points, name)
        result.diagnostics = diagnostics + result.diagnostics
        return result

    async def _plan(self, prompt: str) -> WorkflowPlan:
        try:
            plan = await self.llm_service.analyze_workflow_structure(prompt)
        except LLMConfigurationError:
            raise
        except LLMServiceError as e:
            logger.warning(f"Structure analysis failed, using a single branch: {e}")
            plan = None

        if plan is None or not plan.branches:
            return WorkflowPlan(branches=[BranchPlan(name=FALLBACK_BRANCH, description=prompt)])
        return plan

    async def _generate_fragments(self, branches: Sequence[BranchPlan], prompt: str) -> Tuple[List[Tuple[str, Any]], List[ValidationIssue]]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def generate(branch: BranchPlan) -> str:
            async with semaphore:
                return await self.llm_service.generate_fragment(branch, prompt)

        # join barrier: assembly waits for every branch, failed or not
        outcomes = await asyncio.gather(*(generate(b) for b in branches), return_exceptions=True)

        fragments: List[Tuple[str, Any]] = []
        diagnostics: List[ValidationIssue] = []
        for branch, outcome in zip(branches, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Fragment generation failed for '{branch.name}': {outcome}")
                diagnostics.append(ValidationIssue(
                    node_ref=branch.name,
                    kind=IssueKind.MALFORMED_FRAGMENT,
                    severity=Severity.WARNING,
                    message=f"Generation failed for '{branch.name}': {outcome}",
                ))
                outcome = None
            fragments.append((branch.name, outcome))
        return fragments, diagnostics

    # ---------- Synchronous pipeline ----------

    def synthesize_from_fragments(
        self,
        fragments: Sequence[Tuple[str, Any]],
        merge_points: Optional[List[MergePoint]] = None,
        name: str = "Generated Workflow",
    ) -> SynthesisResult:
        """
        Run the repair pipeline over already generated fragments.

        Args:
            fragments: (fragment name, raw output) pairs; raw output may be JSON
                text, a dict, a RawFragment, or None for a failed generation
            merge_points: Declared merge points
            name: Workflow name

        Returns:
            SynthesisResult with the exported workflow and the validation report
        """
        diagnostics: List[ValidationIssue] = []
        repairs: List[RepairAction] = []
        repaired = []

        for fragment_name, raw in fragments:
            if raw is None:
                parsed, warnings = parse_fragment({"nodes": []}, fragment_name)
            else:
                parsed, warnings = parse_fragment(raw, fragment_name)
            diagnostics.extend(warnings)

            fragment = self.repairer.repair(parsed, fragment_name)
            repairs.extend(fragment.repairs)
            repaired.append(fragment)

        assembled = self.assembler.assemble(repaired, merge_points, name)
        diagnostics.extend(assembled.warnings)

        connectivity = self.connectivity.repair(assembled)
        repairs.extend(connectivity.repairs)
        diagnostics.extend(connectivity.warnings)

        report = self.validator.validate(connectivity.graph, connectivity.reachable)
        workflow = self.translator.translate(connectivity.graph)

        logger.info(
            f"Synthesized '{name}': {len(connectivity.graph.nodes)} nodes, "
            f"{len(repairs)} repairs, valid={report.is_valid}"
        )
        return SynthesisResult(
            workflow=workflow,
            graph=connectivity.graph,
            report=report,
            diagnostics=diagnostics,
            repairs=repairs,
            success=report.is_valid,
        )
