from schemas.document import SourceType, Document, Chunk, Embedding
from schemas.retrieval import (
    RetrievedMatch,
    ContextWindow,
    ContextStats,
    RetrievalResult,
)
from schemas.conversation import (
    ToolCall,
    Message,
    TokenUsage,
    ConversationState,
    ToolInvocation,
)
