"""chatgate - Conversational gateway for OpenAI-compatible model providers.

chatgate proxies chat requests to a large-language-model provider, persists
conversation history, and dispatches model-issued tool calls to a small set
of local utilities. Replies stream back to the caller token by token while
tool-call fragments are buffered, executed and fed into a continuation turn.

Key modules:

- :mod:`chatgate.chat` - Streaming chat orchestration pipeline
- :mod:`chatgate.llm` - Model provider client and error taxonomy
- :mod:`chatgate.tools` - Tool registry, schema validation and built-in tools
- :mod:`chatgate.memory` - SQLite-backed session and message store
"""

__version__ = "0.1.0"
