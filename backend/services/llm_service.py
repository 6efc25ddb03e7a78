"""
LLM Service for Workflow Generation

Uses OpenAI function calling in two stages: one call to split a request into
branches, then one call per branch to draft that branch's nodes and
connections. Output is returned as-is; parsing and repair happen downstream.
"""

import openai
import json
import logging
from typing import Optional

from pydantic import ValidationError

from schemas.fragment_schema import (
    BranchPlan, WorkflowPlan, get_plan_json_schema, get_fragment_json_schema
)
from utils import config

logger = logging.getLogger(__name__)


class LLMServiceError(Exception):
    """Raised when the model cannot be reached or returns nothing usable"""
    pass


class LLMConfigurationError(LLMServiceError):
    """Raised when no API key is available"""
    pass


class LLMService:
    """
    Thin async wrapper around chat completions.
    The client is created on first use so the service can be built without credentials.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, temperature: Optional[float] = None):
        self.api_key = api_key or config.OPENAI_API_KEY
        self.model = model or config.OPENAI_MODEL
        self.temperature = config.LLM_TEMPERATURE if temperature is None else temperature
        self._client: Optional[openai.AsyncOpenAI] = None

    @property
    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise LLMConfigurationError("OPENAI_API_KEY is not configured")
            self._client = openai.AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def _call_function(self, system_prompt: str, user_prompt: str, function_name: str, description: str, schema) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                functions=[
                    {
                        "name": function_name,
                        "description": description,
                        "parameters": schema
                    }
                ],
                function_call={"name": function_name},
                temperature=self.temperature,
            )
        except openai.OpenAIError as e:
            raise LLMServiceError(f"{function_name} request failed: {str(e)}") from e

        message = response.choices[0].message
        function_call = message.function_call
        if function_call and function_call.name == function_name and function_call.arguments:
            return function_call.arguments
        # some models answer in plain content despite the forced call
        if message.content:
            return message.content
        raise LLMServiceError(f"{function_name} returned no output")

    async def analyze_workflow_structure(self, prompt: str) -> WorkflowPlan:
        """
        Split a natural-language automation request into independent branches.
        """

        system_prompt = """You are an n8n workflow architect. Your job is to break an automation request into independent branches that can each be built separately.

IMPORTANT: You only PLAN. Do NOT produce nodes or connections here.

Your job:
1. Decide what starts the workflow (webhook, schedule or manual)
2. Identify the separate flows the automation needs (validation, processing, notifications, error handling, ...)
3. Identify where flows need to converge again (merge points)
4. Describe any final actions that run after everything else

RULES:
- Keep branches focused: 2 to 6 nodes each
- Branch names must be short and unique
- Only declare a merge point when branches genuinely rejoin
- merges_branches must use the EXACT branch names you declared"""

        user_prompt = f"""
Automation request:
"{prompt}"

Plan the branches for this workflow.
"""

        arguments = await self._call_function(
            system_prompt, user_prompt,
            "analyze_workflow_structure",
            "Split an automation request into independently generated branches",
            get_plan_json_schema(),
        )
        try:
            plan = WorkflowPlan(**json.loads(arguments))
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            raise LLMServiceError(f"Workflow plan could not be read: {str(e)}") from e

        logger.info(f"Planned {len(plan.branches)} branches, {len(plan.merge_points)} merge points")
        return plan

    async def generate_fragment(self, branch: BranchPlan, prompt: str) -> str:
        """
        Draft the nodes and connections of one branch.

        Returns the raw function-call arguments; the caller parses them.
        """

        system_prompt = """You are an n8n workflow builder. You build ONE branch of a larger workflow.

RULES:
- Do NOT add a trigger node; the branch is started by a shared trigger
- Every node needs a unique "name"; connections reference nodes by name
- Use real n8n node types such as n8n-nodes-base.httpRequest, n8n-nodes-base.set, n8n-nodes-base.if, n8n-nodes-base.code, n8n-nodes-base.emailSend
- Put connections ONLY in the top-level "connections" object, never on a node
- Connection format: {"Source Name": {"main": [[{"node": "Target Name", "type": "main", "index": 0}]]}}
- main[0] is the success output, main[1] the error output
- Lay nodes out left to right: increase the x position by about 200 per step
- Set "start_node" to the first node and "end_nodes" to the last node(s) of the branch

GOOD EXAMPLE:
nodes: Fetch Orders (httpRequest, [250, 300]) -> Filter Paid (if, [450, 300]) -> Update Sheet (googleSheets, [650, 300])
connections: Fetch Orders -> Filter Paid, Filter Paid main[0] -> Update Sheet"""

        user_prompt = f"""
Overall request:
"{prompt}"

Branch to build: "{branch.name}"
Purpose: {branch.description or 'not specified'}
"""
        if branch.trigger_condition:
            user_prompt += f"Activates when: {branch.trigger_condition}\n"
        if branch.estimated_nodes:
            user_prompt += f"Aim for about {branch.estimated_nodes} nodes.\n"

        arguments = await self._call_function(
            system_prompt, user_prompt,
            "generate_workflow_fragment",
            "Generate the nodes and connections of one workflow branch",
            get_fragment_json_schema(),
        )
        logger.info(f"Generated fragment for branch '{branch.name}' ({len(arguments)} chars)")
        return arguments
