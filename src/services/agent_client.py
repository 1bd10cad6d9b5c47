"""Client for the agent invocation endpoint.

One Pulse wake is one ``sys_entity_agent`` GraphQL query. The call can run
for several minutes while the agent reasons and uses tools, so the client
uses a long read timeout and never retries (the call is not idempotent).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from config import AgentConfig
from pulse.errors import AgentInvocationError
from services.http_client import HttpClient

LOGGER = logging.getLogger(__name__)

SYS_ENTITY_AGENT_QUERY = """
query StartAgent(
    $chatHistory: [MultiMessage]!
    $aiName: String
    $entityId: String
    $model: String
    $useMemory: Boolean
    $invocationType: String
) {
    sys_entity_agent(
        chatHistory: $chatHistory
        aiName: $aiName
        entityId: $entityId
        model: $model
        useMemory: $useMemory
        invocationType: $invocationType
    ) {
        result
        resultData
        tool
        warnings
        errors
    }
}
"""


@dataclass(frozen=True)
class AgentRequest:
    """Input for one agent invocation."""

    prompt: str
    entity_id: str
    entity_name: str
    model: str
    use_memory: bool = True
    invocation_type: str = "pulse"


@dataclass(frozen=True)
class AgentResult:
    """Opaque agent response: final text plus raw result data with usage records."""

    result: str | None
    result_data: str | dict[str, Any] | None


class AgentClient:
    """Invoke the agent over GraphQL."""

    def __init__(
        self,
        config: AgentConfig,
        *,
        http_client: HttpClient | None = None,
    ) -> None:
        self._url = config.url
        self._api_key = config.api_key
        self._http = http_client or HttpClient(
            timeout=config.timeout,
            connect_timeout=config.connect_timeout,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def invoke(self, request: AgentRequest) -> AgentResult:
        """Run one agent invocation and return its result.

        Raises:
            AgentInvocationError: On transport failure, a non-JSON body, or
                GraphQL errors in the response.
        """
        variables = {
            "chatHistory": [{"role": "user", "content": [request.prompt]}],
            "aiName": request.entity_name,
            "entityId": request.entity_id,
            "model": request.model,
            "useMemory": request.use_memory,
            "invocationType": request.invocation_type,
        }
        try:
            response = self._http.post(
                self._url,
                json={"query": SYS_ENTITY_AGENT_QUERY, "variables": variables},
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise AgentInvocationError(
                "agent_transport_error",
                f"Agent request failed: {exc}",
                {"entity_id": request.entity_id},
            ) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise AgentInvocationError(
                "agent_invalid_response",
                "Agent response was not valid JSON.",
                {"entity_id": request.entity_id},
            ) from exc

        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            message = "; ".join(
                str(error.get("message", error)) if isinstance(error, dict) else str(error)
                for error in errors
            )
            raise AgentInvocationError(
                "agent_graphql_error",
                f"Agent returned errors: {message}",
                {"entity_id": request.entity_id},
            )

        data = body.get("data") if isinstance(body, dict) else None
        payload = (data or {}).get("sys_entity_agent") or {}
        LOGGER.debug("Agent invocation finished for entity %s", request.entity_id)
        return AgentResult(
            result=payload.get("result"),
            result_data=payload.get("resultData"),
        )
