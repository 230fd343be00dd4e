import logging
from typing import List, Optional

from langgraph.graph import StateGraph, END
from langchain_core.runnables import RunnableConfig
from pydantic import BaseModel

from .errors import FilmSuiteError
from .handlers import generate_characters, generate_script
from .llm import ChatClient
from .models import GenerateCharactersRequest, GenerateRequest
from .prompts import normalize_script_length

logger = logging.getLogger(__name__)


class PackageState(BaseModel):
    request_id: str
    request: GenerateRequest
    package: Optional[dict] = None
    characters: List[dict] = []


def _chat(config: RunnableConfig) -> ChatClient:
    return config["configurable"]["chat"]


def node_script(state: PackageState, config: RunnableConfig) -> dict:
    req = state.request
    logger.info(f"[{state.request_id}] Generating script for {req.movie_genre} / {req.script_length}")
    package = generate_script(req.movie_idea, req.movie_genre, req.script_length, _chat(config), state.request_id)
    return {"package": package}


def node_characters(state: PackageState, config: RunnableConfig) -> dict:
    assert state.package
    try:
        req = GenerateCharactersRequest(
            step="generate-characters",
            script_content=state.package["script"],
            genre=state.request.movie_genre,
        )
        result = generate_characters(req, _chat(config), state.request_id)
    except FilmSuiteError as e:
        # The script is still worth returning without a cast.
        logger.error(f"[{state.request_id}] Character extraction failed: {e}")
        return {"characters": []}
    return {"characters": result["characters"]}


def build_graph():
    g = StateGraph(PackageState)
    g.add_node("script", node_script)
    g.add_node("characters", node_characters)
    g.set_entry_point("script")
    g.add_edge("script", "characters")
    g.add_edge("characters", END)
    return g.compile()


GRAPH = build_graph()


def run_pipeline(req: GenerateRequest, chat: ChatClient, request_id: str) -> dict:
    logger.info(f"[{request_id}] Starting film package pipeline")
    final_state = GRAPH.invoke(
        {"request_id": request_id, "request": req},
        config={"configurable": {"chat": chat}},
    )
    if hasattr(final_state, "get"):
        package, characters = final_state.get("package"), final_state.get("characters", [])
    else:
        package, characters = final_state.package, final_state.characters
    logger.info(f"[{request_id}] Pipeline completed with {len(characters)} characters")
    return {
        "idea": req.movie_idea,
        "genre": req.movie_genre,
        "length": normalize_script_length(req.script_length),
        **package,
        "characters": characters,
    }
