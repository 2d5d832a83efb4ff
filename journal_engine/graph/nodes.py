"""
Node handlers.

Each handler receives the chain state and a NodeContext and returns a
NodeResult: the state update to merge into the successor's payload, and the
branch outcome used by the registry. Handlers raise on failure; the executor
records the failure on the task.
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from langchain_core.exceptions import OutputParserException

from journal_engine.core.logging import logger
from journal_engine.db.journal import JournalStore
from journal_engine.graph import prompts
from journal_engine.graph.registry import Branch, BranchOutcome
from journal_engine.services.llm import parse_structured_output
from journal_engine.services.memory import (
    NO_MEMORIES,
    MemoryRetriever,
    get_memory_context,
    merge_results,
)


MEMORY_SEARCH_TOOL = "memory_search"

CLASSIFICATIONS = [
    Branch.NOTE_PLUS_QUESTION,
    Branch.ESCALATE_TO_ASK,
    Branch.QUESTION,
    Branch.NOTE,
]

LLMFn = Callable[..., Awaitable[str]]
EmbedFn = Callable[[str], Awaitable[List[float]]]


@dataclass
class NodeContext:
    """Identity of the running task and the collaborators its handler may use."""
    task_id: str
    user_id: str
    session_id: str
    llm: LLMFn
    retriever: MemoryRetriever
    journal: JournalStore
    embed: EmbedFn
    memory_threshold: float = 0.5
    memory_limit_per_level: int = 5
    memory_max_tokens: int = 2000


@dataclass
class NodeResult:
    update: Dict[str, Any] = field(default_factory=dict)
    outcome: BranchOutcome = field(default_factory=BranchOutcome)


Handler = Callable[[Dict[str, Any], NodeContext], Awaitable[NodeResult]]


def _loop_outcome(state: Dict[str, Any], branch: Branch, **counts: int) -> BranchOutcome:
    return BranchOutcome(
        branch=branch,
        rewrite_count=counts.get("rewrite_count", state.get("rewrite_count", 0)),
        iteration_count=counts.get("iteration_count", state.get("iteration_count", 0)),
    )


async def _store_embedding(ctx: NodeContext, content: str, metadata: Dict[str, Any]) -> None:
    """Embed and store content. Failures are logged, the message itself is already saved."""
    try:
        embedding = await ctx.embed(content)
        await ctx.journal.store_embedding(ctx.user_id, content, embedding, metadata)
    except Exception as e:
        logger.warning(f"Could not store embedding for {metadata.get('type')} {metadata.get('source_id')}: {e}")


async def _save_ask_message(
    ctx: NodeContext,
    state: Dict[str, Any],
    role: str,
    content: str,
    message_id: Optional[str] = None,
) -> str:
    if not message_id:
        message_id = await ctx.journal.save_ask_message(ctx.session_id, role, content)
    await _store_embedding(ctx, content, {
        "type": "ask_message",
        "source_id": message_id,
        "thread_id": ctx.session_id,
        "date": state.get("current_date"),
    })
    return message_id


def _require_response(text: str, node: str) -> str:
    if not text:
        raise ValueError(f"Empty response from language model in {node}")
    return text


def _context_block(state: Dict[str, Any], memory_context: Optional[str]) -> str:
    parts = []
    if state.get("conversation_history"):
        parts.append(f"Previous conversation:\n{state['conversation_history']}")
    if memory_context and memory_context != NO_MEMORIES:
        parts.append(f"Relevant memory context:\n{memory_context}")
    return "\n\n".join(parts) + "\n\n" if parts else ""


# Shared

async def memory_retriever(state: Dict[str, Any], ctx: NodeContext) -> NodeResult:
    results = await ctx.retriever.retrieve(
        state["user_message"],
        ctx.user_id,
        threshold=ctx.memory_threshold,
        limit_per_level=ctx.memory_limit_per_level,
    )
    return NodeResult(update={
        "memory_context": get_memory_context(results, ctx.memory_max_tokens),
        "memory_levels": [r.hierarchy_level.value for r in results],
    })


# root graph

async def save_user_message(state: Dict[str, Any], ctx: NodeContext) -> NodeResult:
    message_id = await _save_ask_message(
        ctx, state, "user", state["user_message"], state.get("user_message_id")
    )
    return NodeResult(update={"user_message_id": message_id})


async def root_response_agent(state: Dict[str, Any], ctx: NodeContext) -> NodeResult:
    history = state.get("conversation_history")
    conversation = f"{history}\n\nUser: {state['user_message']}" if history else f"User: {state['user_message']}"

    prompt = f"Conversation:\n{conversation}"
    if state.get("memory_context"):
        prompt = f"Memory context:\n{state['memory_context']}\n\n{prompt}"
    if state.get("user_email"):
        prompt = f"User email: {state['user_email']}\n\n{prompt}"

    reply = await ctx.llm(
        prompt,
        system_prompt=prompts.with_date(prompts.ROOT_SYSTEM_PROMPT, state["current_date"]),
    )
    return NodeResult(update={"agent_response": _require_response(reply, "root_response_agent")})


async def save_assistant_message(state: Dict[str, Any], ctx: NodeContext) -> NodeResult:
    message_id = await _save_ask_message(ctx, state, "assistant", state["agent_response"])
    await ctx.journal.touch_thread(ctx.session_id)
    return NodeResult(update={"assistant_message_id": message_id})


# orchestrator graph

async def router(state: Dict[str, Any], ctx: NodeContext) -> NodeResult:
    iteration_count = state.get("iteration_count", 0) + 1
    query = state.get("rewritten_query") or state["user_message"]

    text = await ctx.llm(
        f"{_context_block(state, None)}User: {query}",
        system_prompt=prompts.with_date(prompts.ROUTER_SYSTEM_PROMPT, state["current_date"]),
        temperature=0.0,
    )

    try:
        decision = parse_structured_output(text)
    except OutputParserException:
        logger.warning(f"Task {ctx.task_id}: unreadable router decision, responding directly")
        decision = {"action": "respond"}

    queries = [q for q in decision.get("queries") or [] if isinstance(q, str) and q.strip()]
    if decision.get("action") == "search" and queries:
        tool_calls = [{"name": MEMORY_SEARCH_TOOL, "query": q} for q in queries]
        branch = Branch.USE_TOOLS
    else:
        tool_calls = []
        branch = Branch.RESPOND

    logger.info(f"Task {ctx.task_id}: router chose {branch.value} (iteration {iteration_count})")
    return NodeResult(
        update={"iteration_count": iteration_count, "tool_calls": tool_calls},
        outcome=_loop_outcome(state, branch, iteration_count=iteration_count),
    )


async def tool_executor(state: Dict[str, Any], ctx: NodeContext) -> NodeResult:
    calls = state.get("tool_calls") or []
    if not calls:
        return NodeResult(outcome=_loop_outcome(state, Branch.RESPOND))

    batches = []
    tools_used = []
    for call in calls:
        if call.get("name") != MEMORY_SEARCH_TOOL:
            logger.warning(f"Task {ctx.task_id}: skipping unknown tool {call.get('name')}")
            continue
        batches.append(await ctx.retriever.retrieve(
            call.get("query") or state["user_message"],
            ctx.user_id,
            threshold=ctx.memory_threshold,
            limit_per_level=ctx.memory_limit_per_level,
        ))
        tools_used.append(MEMORY_SEARCH_TOOL)

    merged = merge_results(batches)
    return NodeResult(
        update={
            "retrieved_context": get_memory_context(merged, ctx.memory_max_tokens),
            "tools_used": tools_used,
        },
        outcome=_loop_outcome(state, Branch.USE_TOOLS),
    )


async def grade_documents(state: Dict[str, Any], ctx: NodeContext) -> NodeResult:
    context = state.get("retrieved_context")
    question = state.get("original_query") or state["user_message"]

    if not context or context == NO_MEMORIES:
        relevant, reasoning = False, "No documents were retrieved to grade"
    else:
        text = await ctx.llm(
            prompts.GRADE_DOCUMENTS_PROMPT.format(context=context, question=question),
            temperature=0.1,
        )
        try:
            grade = parse_structured_output(text)
            relevant = str(grade.get("binary_score", "")).strip().lower() == "yes"
            reasoning = grade.get("reasoning")
        except OutputParserException:
            relevant, reasoning = True, "Unreadable grade, using the documents"

    branch = Branch.RELEVANT if relevant else Branch.IRRELEVANT
    return NodeResult(
        update={"grading_result": branch.value, "grading_reasoning": reasoning},
        outcome=_loop_outcome(state, branch),
    )


async def rewrite_query(state: Dict[str, Any], ctx: NodeContext) -> NodeResult:
    original_query = state.get("original_query") or state["user_message"]
    rewrite_count = state.get("rewrite_count", 0) + 1

    text = await ctx.llm(
        prompts.REWRITE_QUERY_PROMPT.format(question=original_query),
        temperature=0.5,
    )
    rewritten = text or original_query
    logger.info(f"Task {ctx.task_id}: rewrite #{rewrite_count}: {original_query!r} -> {rewritten!r}")

    return NodeResult(
        update={
            "original_query": original_query,
            "rewritten_query": rewritten,
            "rewrite_count": rewrite_count,
            "tool_calls": None,
            "retrieved_context": None,
            "grading_result": None,
        },
        outcome=_loop_outcome(state, Branch.NEXT, rewrite_count=rewrite_count),
    )


async def synthesize(state: Dict[str, Any], ctx: NodeContext) -> NodeResult:
    prompt = (
        f"{_context_block(state, state.get('retrieved_context'))}"
        f"User question: {state['user_message']}\n\n"
        "Provide a helpful response based on the available context. If no relevant "
        "context was found, acknowledge this and offer to help in other ways."
    )
    reply = await ctx.llm(
        prompt,
        system_prompt=prompts.with_date(prompts.ORCHESTRATOR_SYSTEM_PROMPT, state["current_date"]),
        temperature=0.7,
    )
    return NodeResult(update={"agent_response": _require_response(reply, "synthesize")})


async def save_messages(state: Dict[str, Any], ctx: NodeContext) -> NodeResult:
    user_message_id = await _save_ask_message(
        ctx, state, "user", state["user_message"], state.get("user_message_id")
    )
    assistant_message_id = await _save_ask_message(ctx, state, "assistant", state["agent_response"])
    await ctx.journal.touch_thread(ctx.session_id)
    return NodeResult(update={
        "user_message_id": user_message_id,
        "assistant_message_id": assistant_message_id,
    })


# daily graph

def _classify(text: str) -> Branch:
    label = text.strip().upper()
    for branch in CLASSIFICATIONS:
        if label == branch.value:
            return branch
    for branch in CLASSIFICATIONS:
        if branch.value in label:
            return branch
    return Branch.NOTE


async def classifier_agent(state: Dict[str, Any], ctx: NodeContext) -> NodeResult:
    text = await ctx.llm(
        state["user_message"],
        system_prompt=prompts.DAILY_CLASSIFIER_SYSTEM_PROMPT,
        temperature=0.0,
    )
    branch = _classify(text)
    logger.info(f"Task {ctx.task_id}: classified daily message as {branch.value}")
    return NodeResult(update={"classification": branch.value}, outcome=BranchOutcome(branch=branch))


async def daily_response_agent(state: Dict[str, Any], ctx: NodeContext) -> NodeResult:
    memory_context = state.get("memory_context")
    prompt = f"User question: {state['user_message']}"
    if memory_context:
        prompt = f"Memory context:\n{memory_context}\n\n{prompt}"

    reply = await ctx.llm(
        prompt,
        system_prompt=prompts.with_date(prompts.DAILY_RESPONSE_SYSTEM_PROMPT, state["current_date"]),
    )
    return NodeResult(update={"agent_response": _require_response(reply, "daily_response_agent")})


async def note_acknowledgment(state: Dict[str, Any], ctx: NodeContext) -> NodeResult:
    return NodeResult(update={"agent_response": prompts.NOTE_ACKNOWLEDGMENT})


async def suggest_ask_ai(state: Dict[str, Any], ctx: NodeContext) -> NodeResult:
    return NodeResult(update={"agent_response": prompts.SUGGEST_ASK_AI})


async def save_events(state: Dict[str, Any], ctx: NodeContext) -> NodeResult:
    current_date = state["current_date"]
    saved: List[str] = []

    note = await ctx.journal.save_daily_event(
        ctx.user_id, current_date, "user", "note", state["user_message"]
    )
    saved.append(note["id"])
    await _store_embedding(ctx, state["user_message"], {
        "type": "daily_event",
        "source_id": note["id"],
        "date": current_date,
    })

    if state.get("agent_response"):
        answer = await ctx.journal.save_daily_event(
            ctx.user_id, current_date, "agent", "answer", state["agent_response"]
        )
        saved.append(answer["id"])

    return NodeResult(update={"saved_event_ids": saved})


NODE_HANDLERS: Dict[str, Handler] = {
    "save_user_message": save_user_message,
    "memory_retriever": memory_retriever,
    "root_response_agent": root_response_agent,
    "save_assistant_message": save_assistant_message,
    "router": router,
    "tool_executor": tool_executor,
    "grade_documents": grade_documents,
    "rewrite_query": rewrite_query,
    "synthesize": synthesize,
    "save_messages": save_messages,
    "classifier_agent": classifier_agent,
    "daily_response_agent": daily_response_agent,
    "note_acknowledgment": note_acknowledgment,
    "suggest_ask_ai": suggest_ask_ai,
    "save_events": save_events,
}
