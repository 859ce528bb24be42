"""
MCP stdio server for gmem: memory tools for AI agents.

Exposes MemoryStore operations as MCP tools so local agents can store,
search, and compress memories without any HTTP infrastructure.

Usage:
    gmem mcp                              # stdio server (via CLI)
    claude mcp add --scope user gmem -- gmem mcp

All store calls are serialized through a single asyncio.Lock; writes
also take the store file lock under the ``service`` role.
"""

import asyncio
import json
import os
import signal
from typing import Annotated, Optional

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from .api import MemoryStore
from .config import load_or_create_config
from .errors import GmemError
from .lock import LockRole
from .types import split_tag_string

# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "gmem-store",
    instructions=(
        "Persistent keyword-searchable memory. "
        "Store facts, preferences, and decisions with tags; "
        "search or compress them into a size-bounded context block."
    ),
)

_store: Optional[MemoryStore] = None
_lock = asyncio.Lock()


def _get_store() -> MemoryStore:
    """Lazy-init the store from config (respects GMEM_STORE_PATH).

    Must be called inside ``async with _lock``.
    """
    global _store
    if _store is None:
        _store = MemoryStore(load_or_create_config(), role=LockRole.SERVICE)
    return _store


# ---------------------------------------------------------------------------
# Tool annotations
# ---------------------------------------------------------------------------

_READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False)
_ADDITIVE = ToolAnnotations(destructiveHint=False, idempotentHint=False)
_IDEMPOTENT = ToolAnnotations(idempotentHint=True, destructiveHint=False)
_DESTRUCTIVE = ToolAnnotations(destructiveHint=True, idempotentHint=False)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool(
    description="Store a new memory with optional comma-separated tags.",
    annotations=_ADDITIVE,
)
async def add_memory(
    text: Annotated[str, Field(description="Memory content.")],
    tags: Annotated[Optional[str], Field(
        description='Comma-separated tags, e.g. "ops, deploy".',
    )] = None,
) -> str:
    """Store a memory."""
    async with _lock:
        store = _get_store()
        try:
            record = store.add(text, split_tag_string(tags))
        except (GmemError, OSError) as e:
            return f"Error: {e}"
    return f"Stored: {record.id}"


@mcp.tool(
    description=(
        "Search memories by keywords. Returns matches ranked by relevance "
        "(text, tag, and keyword matches plus recency)."
    ),
    annotations=_READ_ONLY,
)
async def search_memory(
    query: Annotated[str, Field(description="Space-separated search terms.")],
    limit: Annotated[int, Field(description="Max results to return.")] = 10,
) -> str:
    """Search memory."""
    async with _lock:
        store = _get_store()
        try:
            hits = store.search(query, limit=limit)
        except (GmemError, OSError) as e:
            return f"Error: {e}"

    if not hits:
        return "No results found."
    lines = []
    for hit in hits:
        r = hit.record
        tag_str = f" [{', '.join(r.tags)}]" if r.tags else ""
        lines.append(f"- {r.id} ({hit.score:.1f}){tag_str} {r.text}")
    return "\n".join(lines)


@mcp.tool(
    description=(
        "Compress memories relevant to a query into a markdown block "
        "no longer than the character budget."
    ),
    annotations=_READ_ONLY,
)
async def compress_memory(
    query: Annotated[str, Field(description="Space-separated search terms.")],
    budget: Annotated[int, Field(description="Maximum characters (minimum 200).")] = 2000,
    limit: Annotated[int, Field(description="Max memories to consider.")] = 25,
) -> str:
    """Compress relevant memories."""
    async with _lock:
        store = _get_store()
        try:
            result = store.compress(query, budget=budget, limit=limit)
        except (GmemError, OSError) as e:
            return f"Error: {e}"
    return result.markdown


@mcp.tool(
    description="Soft-delete a memory by ID (kept on disk until purged).",
    annotations=_IDEMPOTENT,
)
async def delete_memory(
    id: Annotated[str, Field(description="Memory ID to delete.")],
) -> str:
    """Soft-delete a memory."""
    async with _lock:
        store = _get_store()
        try:
            deleted = store.soft_delete(id)
        except (GmemError, OSError) as e:
            return f"Error: {e}"
    return f"Deleted: {id}" if deleted else f"Not found: {id}"


@mcp.tool(
    description=(
        "Permanently remove memories matching an ID, a tag, or a text substring "
        "(any match removes)."
    ),
    annotations=_DESTRUCTIVE,
)
async def purge_memory(
    id: Annotated[Optional[str], Field(description="Exact memory ID.")] = None,
    tag: Annotated[Optional[str], Field(description="Tag to match.")] = None,
    text: Annotated[Optional[str], Field(description="Case-sensitive text substring.")] = None,
) -> str:
    """Purge memories."""
    if not (id or tag or text):
        return "Error: give at least one of id, tag, text"
    async with _lock:
        store = _get_store()
        try:
            count = store.purge(id=id, tag=tag, text=text)
        except (GmemError, OSError) as e:
            return f"Error: {e}"
    return f"Purged: {count}"


@mcp.tool(
    description="Record counts (total, active, deleted) and tag frequencies.",
    annotations=_READ_ONLY,
)
async def get_stats() -> str:
    """Store statistics."""
    async with _lock:
        store = _get_store()
        try:
            stats = store.stats()
        except (GmemError, OSError) as e:
            return f"Error: {e}"
    return json.dumps(stats.to_dict(), ensure_ascii=False)


@mcp.tool(
    description="Export every memory (including deleted ones) as a JSON array.",
    annotations=_READ_ONLY,
)
async def export_memory() -> str:
    """Export all memories."""
    async with _lock:
        store = _get_store()
        try:
            return store.export_json()
        except (GmemError, OSError) as e:
            return f"Error: {e}"


@mcp.tool(
    description=(
        "Import memories from a JSON array (as produced by export_memory). "
        "Existing IDs are skipped; invalid entries are reported."
    ),
    annotations=_ADDITIVE,
)
async def import_memory(
    data: Annotated[str, Field(description="JSON array of memory records.")],
) -> str:
    """Import memories."""
    async with _lock:
        store = _get_store()
        try:
            result = store.import_records(data)
        except (GmemError, OSError) as e:
            return f"Error: {e}"
    return json.dumps(result.to_dict(), ensure_ascii=False)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    """Run the MCP stdio server."""
    # anyio's stdin reader shields the blocking readline from cancellation,
    # so the first Ctrl+C would otherwise be swallowed.
    signal.signal(signal.SIGINT, lambda *_: os._exit(130))
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
