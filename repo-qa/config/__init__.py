from config.settings import (
    AppConfig,
    ChunkerConfig,
    EmbeddingConfig,
    LLMConfig,
    RetrievalConfig,
    RetryPolicy,
    ToolLoopConfig,
    WebSearchConfig,
)
