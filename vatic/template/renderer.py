"""Async template rendering with pipe sub-calls to the agent backend."""

from __future__ import annotations

from loguru import logger

from vatic.errors import AgentError, RenderError, SandboxError
from vatic.template.functions import RenderContext, resolve_param, resolve_tag
from vatic.template.parser import ForBlock, Node, Range, Tag, Text, parse

MAX_ITERATIONS = 1000
SUMMARY_PROMPT = "Summarize the following text concisely:\n\n{}"

PIPES = {
    "summary": SUMMARY_PROMPT,
    "agent": "{}",
}


async def render(template: str, ctx: RenderContext) -> str:
    """Render ``template`` against a captured context."""
    return await render_nodes(parse(template), ctx)


async def render_nodes(nodes: list[Node] | tuple[Node, ...], ctx: RenderContext) -> str:
    output: list[str] = []
    for node in nodes:
        if isinstance(node, Text):
            output.append(node.value)
        elif isinstance(node, Tag):
            value = resolve_tag(node, ctx)
            for pipe in node.pipes:
                value = await apply_pipe(pipe, value, ctx)
            output.append(value)
        elif isinstance(node, ForBlock):
            output.append(await _render_loop(node, ctx))
    return "".join(output)


async def apply_pipe(pipe: str, value: str, ctx: RenderContext) -> str:
    """Send ``value`` through the agent and return its answer."""
    prompt_format = PIPES.get(pipe)
    if prompt_format is None:
        raise RenderError(f"unknown pipe '{pipe}'")
    if ctx.agent is None:
        raise RenderError(f"pipe '{pipe}' needs an agent backend")

    logger.debug(f"[{ctx.alias}] pipe '{pipe}' on {len(value)} chars")
    try:
        return await ctx.agent.complete(prompt_format.format(value))
    except (AgentError, SandboxError) as e:
        raise RenderError(f"pipe '{pipe}' failed: {e}") from e


async def _render_loop(block: ForBlock, ctx: RenderContext) -> str:
    output: list[str] = []

    if isinstance(block.iterable, Range):
        start, end = block.iterable.start, block.iterable.end
        if end - start + 1 > MAX_ITERATIONS:
            raise RenderError(f"range ({start}..{end}) exceeds {MAX_ITERATIONS} iterations")
        for index in range(start, end + 1):
            output.append(await render_nodes(block.body, ctx.with_loop_var(block.var, index)))
        return "".join(output)

    if block.iterable != "memories":
        raise RenderError(f"unknown collection '{block.iterable}'")

    limit = MAX_ITERATIONS
    if "limit" in block.params:
        raw = resolve_param(block.params["limit"], ctx)
        try:
            limit = min(int(raw), MAX_ITERATIONS)
        except ValueError:
            raise RenderError(f"invalid loop limit '{raw}'") from None
    for entry in ctx.memories(max(limit, 0)):
        output.append(await render_nodes(block.body, ctx.with_loop_var(block.var, entry)))
    return "".join(output)
