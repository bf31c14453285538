"""
Knowledge Retriever (RAG)
=========================

In-memory semantic index over the clinical protocol corpus
(`data/knowledge_base/protocols/*.md`), used by the Advisor agent.

Lifecycle:
- Constructed once per process and injected into every consumer.
- `initialize()` builds the index on first call only. Concurrent first
  calls are serialized by an asyncio.Lock, so the corpus is embedded at
  most once; later calls return immediately.
- After the build the index is only read, so queries take no lock.

The index lives for the process lifetime and is rebuilt on restart.
An empty corpus is not an error: retrieval then returns no chunks and the
Advisor answers without citations.
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings
from langchain_core.vectorstores import InMemoryVectorStore
from langchain_text_splitters import RecursiveCharacterTextSplitter

from config import Settings, get_settings
from exceptions import KnowledgeBaseError
from models import RetrievedChunk

logger = logging.getLogger(__name__)


def load_protocol_documents(directory: Path) -> List[Document]:
    """
    Read every Markdown protocol in `directory`.

    Each document's `source` metadata is its file name. A missing
    directory yields an empty list.

    Raises:
        KnowledgeBaseError: If a protocol file exists but cannot be read
    """
    if not directory.is_dir():
        logger.warning(f"Knowledge base directory not found: {directory}")
        return []

    documents = []
    for path in sorted(directory.glob("*.md")):
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise KnowledgeBaseError(str(path), str(e)) from e
        if content.strip():
            documents.append(Document(page_content=content, metadata={"source": path.name}))
    return documents


class KnowledgeRetriever:
    """
    Process-wide protocol index with at-most-once initialization.

    Usage:
        retriever = KnowledgeRetriever(embeddings, settings)
        await retriever.initialize()
        chunks = await retriever.aretrieve("đau bụng vùng thượng vị")
    """

    def __init__(
        self,
        embeddings: Embeddings,
        settings: Optional[Settings] = None,
        knowledge_base_dir: Optional[str] = None,
    ):
        self.settings = settings or get_settings()
        self.embeddings = embeddings
        self.knowledge_base_dir = Path(knowledge_base_dir or self.settings.knowledge_base_dir)
        self.top_k = self.settings.retrieval_top_k

        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.settings.chunk_size,
            chunk_overlap=self.settings.chunk_overlap,
        )
        self._store: Optional[InMemoryVectorStore] = None
        self._chunk_count = 0
        self._lock = asyncio.Lock()
        # Number of completed index builds; stays at 1 for the process lifetime
        self.build_count = 0

    @property
    def is_initialized(self) -> bool:
        return self._store is not None

    @property
    def chunk_count(self) -> int:
        return self._chunk_count

    async def initialize(self) -> None:
        """
        Build the index if it has not been built yet.

        Safe to call from many sessions at once: the first caller builds,
        the others wait on the lock and then see the finished index.
        """
        if self._store is not None:
            return

        async with self._lock:
            if self._store is not None:
                return

            logger.info(f"Building knowledge base index from {self.knowledge_base_dir}")
            documents = await asyncio.to_thread(load_protocol_documents, self.knowledge_base_dir)

            store = InMemoryVectorStore(embedding=self.embeddings)
            if not documents:
                logger.warning("No documents found in knowledge base, retrieval will return no context")
                chunks = []
            else:
                chunks = self._splitter.split_documents(documents)
                await store.aadd_documents(chunks)

            self._chunk_count = len(chunks)
            self._store = store
            self.build_count += 1
            logger.info(
                f"Knowledge base ready: {len(documents)} documents, {self._chunk_count} chunks"
            )

    async def aretrieve(self, query: str, k: Optional[int] = None) -> List[RetrievedChunk]:
        """
        Return up to k protocol chunks ranked by embedding similarity.

        Args:
            query: Free-text query (the note's subjective section)
            k: Number of chunks (defaults to `retrieval_top_k`)

        Returns:
            Chunks best first; empty for an empty corpus or blank query
        """
        await self.initialize()

        if self._chunk_count == 0 or not query or not query.strip():
            return []

        docs = await self._store.asimilarity_search(query, k=k or self.top_k)
        chunks = [
            RetrievedChunk(
                content=doc.page_content,
                source=Path(doc.metadata.get("source", "Unknown Source")).stem,
            )
            for doc in docs
        ]
        logger.debug(f"Retrieved {len(chunks)} chunks: {[c.source for c in chunks]}")
        return chunks


def create_knowledge_retriever(
    embeddings: Embeddings,
    settings: Optional[Settings] = None,
) -> KnowledgeRetriever:
    """Factory for the process-wide retriever (construct once, inject everywhere)."""
    return KnowledgeRetriever(embeddings=embeddings, settings=settings)
