"""
API executor - A single HTTP call per dispatch.

Config:
    url:      required; ``{{input}}`` is substituted (URL-encoded)
    method:   GET (default) or POST
    headers:  optional dict
    body:     POST body template; ``{{input}}`` is substituted. Defaults
              to the node input.
    timeout:  seconds, default 30
"""

import logging
from urllib.parse import quote

import httpx

from flowgraph.executors.basic import substitute_input
from flowgraph.graph.errors import ExecutorError
from flowgraph.graph.node import ExecutorOutput, NodeContext

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class ApiExecutor:
    """
    Calls an HTTP endpoint with httpx.

    Pass ``transport`` (e.g. ``httpx.MockTransport``) to route requests
    somewhere other than the network.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    async def execute(self, ctx: NodeContext) -> ExecutorOutput:
        config = ctx.config
        url = config.get("url")
        if not url:
            raise ExecutorError("API node requires a url", node_id=ctx.node.id)

        method = str(config.get("method", "GET")).upper()
        if method not in ("GET", "POST"):
            raise ExecutorError(f"Unsupported HTTP method '{method}'", node_id=ctx.node.id)

        url = substitute_input(url, quote(ctx.input.strip(), safe=""))
        headers = config.get("headers") or {}
        timeout = float(config.get("timeout", DEFAULT_TIMEOUT_SECONDS))

        async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
            try:
                if method == "POST":
                    body = substitute_input(str(config.get("body") or "{{input}}"), ctx.input)
                    response = await client.post(url, content=body, headers=headers)
                else:
                    response = await client.get(url, headers=headers)
                response.raise_for_status()
            except httpx.TimeoutException as e:
                raise ExecutorError(f"Request to {url} timed out", node_id=ctx.node.id) from e
            except httpx.HTTPStatusError as e:
                raise ExecutorError(
                    f"HTTP {e.response.status_code} from {url}", node_id=ctx.node.id
                ) from e
            except httpx.RequestError as e:
                raise ExecutorError(f"Network error: {e}", node_id=ctx.node.id) from e

        logger.debug(f"{method} {url} -> {response.status_code}")
        return ExecutorOutput(output=response.text)
