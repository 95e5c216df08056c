"""SupportFlow: a retrieval-augmented, tool-using support agent for ShopHub.

Architecture Overview
=====================

Each customer question runs as one LangGraph StateGraph turn:

1. **sentiment** flags frustrated customers (keyword heuristic, advisory).
2. **retrieve** embeds the question with Cohere and ranks knowledge-base
   chunks by cosine similarity (exact linear scan, numpy).
3. **call_model** asks Claude to answer, offering every store tool.
4. **tools** runs the requested tools in order through the ToolRegistry,
   which validates arguments and injects the caller's identity.
5. **synthesize** makes a second model call over the tool results.
6. **answer** streams the final text word by word and ends with ``complete``.

Every step emits typed progress events; the FastAPI transport relays them
as Server-Sent Events and persists both sides of the conversation.

Package Structure
-----------------
- ``supportflow/agent.py`` - LangGraph StateGraph and the SupportAgent facade
- ``supportflow/config.py`` - Centralized configuration from environment variables
- ``supportflow/events.py`` - Stream event models
- ``supportflow/memory.py`` - Conversation threads, escalation and briefings
- ``supportflow/prompts.py`` - System prompt with retrieved context
- ``supportflow/runtime.py`` - Opens and closes every client
- ``supportflow/server.py`` - FastAPI application
- ``supportflow/main.py`` - CLI chat and maintenance commands
- ``supportflow/retrieval/`` - Similarity index and retriever
- ``supportflow/services/`` - Embedding and chat-model clients, cache, metrics
- ``supportflow/storage/`` - In-memory and MongoDB repositories
- ``supportflow/tools/`` - Tool registry and the order/product/escalation tools
- ``supportflow/api/`` - FastAPI routes and Pydantic schemas
"""
