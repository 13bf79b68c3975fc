"""Question answering over ingested documentation.

Retrieval with a sufficiency policy, LLM completion with optional tool use
(web search), and repository summaries.
"""
