"""
LLM and Embedding Services for ExamScribe AI
============================================

Every agent talks to the language model through one narrow async call,
`acomplete(prompt, json_mode=...)`, and to the embedding model through
LangChain's `Embeddings` interface. Keeping the seam this small lets
tests swap in deterministic mocks and keeps provider details (Ollama
options, JSON mode, timeouts) in one place.

Architecture Pattern: Protocol + Implementation + Mock + Factory
----------------------------------------------------------------
- ChatServiceProtocol: what agents depend on
- OllamaChatService: LangChain `prompt | llm | StrOutputParser()` chain
- MockChatService: scripted responses for tests and offline demos
- create_chat_service() / create_embeddings(): pick one from settings
"""

import asyncio
import hashlib
import json
import logging
import math
import re
from typing import Any, Callable, Optional, Protocol, Union

from langchain_core.embeddings import Embeddings
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_ollama import ChatOllama, OllamaEmbeddings

from config import Settings, get_settings
from exceptions import OllamaConnectionError
from prompts import MEDICAL_TERM_CORRECTIONS


# Set up module logger
logger = logging.getLogger(__name__)


class ChatServiceProtocol(Protocol):
    """
    Protocol for chat-completion backends.

    `json_mode` is the response-format hint: when True the caller will
    parse the reply as JSON and the backend should constrain its output.
    """

    async def acomplete(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        json_mode: bool = False,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> str:
        """
        Run one chat completion.

        Args:
            prompt: User message
            system: Optional system message
            json_mode: Ask the backend for a JSON-only reply
            temperature: Sampling temperature (backend default if None)
            model: Model name override (backend default if None)

        Returns:
            The raw text reply
        """
        ...


# =============================================================================
# Ollama Implementation
# =============================================================================

class OllamaChatService:
    """
    Chat service backed by a local Ollama server through LangChain.

    ChatOllama clients are created lazily and cached per
    (model, temperature, json_mode) so concurrent agents share connections.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._clients: dict[tuple[str, float, bool], ChatOllama] = {}

        logger.info(
            f"OllamaChatService initialized: {self.settings.ollama_model} "
            f"at {self.settings.ollama_base_url}"
        )

    def _get_llm(self, model: str, temperature: float, json_mode: bool) -> ChatOllama:
        key = (model, temperature, json_mode)
        if key not in self._clients:
            logger.debug(f"Creating ChatOllama client: model={model}, temperature={temperature}, json={json_mode}")
            self._clients[key] = ChatOllama(
                model=model,
                base_url=self.settings.ollama_base_url,
                temperature=temperature,
                num_ctx=self.settings.ollama_context_window,
                format="json" if json_mode else "",
                client_kwargs={"timeout": self.settings.ollama_timeout},
            )
        return self._clients[key]

    async def acomplete(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        json_mode: bool = False,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> str:
        model = model or self.settings.ollama_model
        temperature = self.settings.scribe_temperature if temperature is None else temperature

        messages = []
        if system:
            messages.append(SystemMessage(content=system))
        messages.append(HumanMessage(content=prompt))

        # Message objects are not templated, so JSON braces in prompts are safe
        chat_prompt = ChatPromptTemplate.from_messages(messages)
        chain = chat_prompt | self._get_llm(model, temperature, json_mode) | StrOutputParser()

        try:
            response = await chain.ainvoke({})
        except Exception as e:
            error_msg = str(e)
            if "connect" in error_msg.lower() or "refused" in error_msg.lower():
                raise OllamaConnectionError(
                    url=self.settings.ollama_base_url,
                    original_error=error_msg
                ) from e
            raise

        logger.debug(f"Ollama response ({model}, {len(response)} chars): {response[:200]}")
        return response


# =============================================================================
# Mock Implementation
# =============================================================================

MockReply = Union[str, Exception, Callable[[str, Optional[str]], str]]


class MockChatService:
    """
    Scripted chat service for testing.

    Replies are chosen by the first rule whose key occurs in the system or
    user prompt; otherwise `default` is used. A reply may be a string, an
    exception instance (raised) or a callable `(prompt, system) -> str`.
    Every call is recorded in `calls`.
    """

    def __init__(
        self,
        rules: Optional[dict[str, MockReply]] = None,
        default: MockReply = "",
        delay: float = 0.0,
    ):
        self.rules = dict(rules or {})
        self.default = default
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def acomplete(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        json_mode: bool = False,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> str:
        self.calls.append({
            "prompt": prompt,
            "system": system,
            "json_mode": json_mode,
            "temperature": temperature,
            "model": model,
        })
        if self.delay:
            await asyncio.sleep(self.delay)

        haystack = f"{system or ''}\n{prompt}"
        reply = self.default
        for key, candidate in self.rules.items():
            if key in haystack:
                reply = candidate
                break

        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt, system)
        return reply


def _mock_role_reply(prompt: str, system: Optional[str]) -> str:
    """Label lines by punctuation: questions are the clinician's."""
    assignments = []
    for match in re.finditer(r'^\[(\d+)\] "(.*)"$', prompt, re.MULTILINE):
        role = "Bác sĩ" if match.group(2).rstrip().endswith("?") else "Bệnh nhân"
        assignments.append({"index": int(match.group(1)), "role": role})
    return json.dumps(assignments, ensure_ascii=False)


def _mock_normalizer_reply(prompt: str, system: Optional[str]) -> str:
    text = prompt
    for wrong, right in MEDICAL_TERM_CORRECTIONS.items():
        text = text.replace(wrong, right)
    return text


def default_mock_rules() -> dict[str, MockReply]:
    """Rules that make MockChatService answer every agent plausibly."""
    return {
        "hiệu chỉnh văn bản": _mock_normalizer_reply,
        "phân tích hội thoại": _mock_role_reply,
        "thư ký y khoa": json.dumps({
            "subjective": "Bệnh nhân đau bụng vùng thượng vị 3 ngày.",
            "objective": "Ấn đau nhẹ vùng thượng vị.",
            "assessment": "Viêm dạ dày",
            "plan": "Thuốc ức chế bơm proton, tái khám sau 2 tuần.",
        }, ensure_ascii=False),
        "mã hóa bệnh lý ICD-10": json.dumps(
            {"codes": ["K29.7 - Viêm dạ dày, không đặc hiệu"]}, ensure_ascii=False
        ),
        "chuyên gia y tế cố vấn": (
            "Phù hợp phác đồ điều trị viêm dạ dày. Cân nhắc test Helicobacter pylori "
            "nếu triệu chứng kéo dài."
        ),
    }


# =============================================================================
# Embeddings
# =============================================================================

class MockEmbeddings(Embeddings):
    """
    Deterministic hashed bag-of-words embeddings.

    Identical texts get identical vectors and texts sharing words point in
    similar directions, which is enough to exercise retrieval and scoring
    without a model server.
    """

    def __init__(self, dimensions: int = 256):
        self.dimensions = dimensions

    def _embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimensions
        for token in re.findall(r"\w+", text.lower()):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            vector[int.from_bytes(digest[:4], "little") % self.dimensions] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector] if norm else vector

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.embed_documents(texts)

    async def aembed_query(self, text: str) -> list[float]:
        return self.embed_query(text)


# =============================================================================
# JSON Extraction Helpers
# =============================================================================

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence if the model added one."""
    return _FENCE_RE.sub("", text.strip())


def extract_json_object(text: str) -> dict:
    """
    Parse the JSON object in a model reply.

    Tolerates code fences and prose around the object.

    Raises:
        ValueError: If no JSON object can be parsed
    """
    cleaned = strip_code_fences(text)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\{[\s\S]*\}", cleaned)
        if not match:
            raise ValueError("No JSON object found in model response")
        parsed = json.loads(match.group(0))
    return parsed


def extract_json_array(text: str) -> list:
    """
    Return the first well-formed JSON array in a model reply.

    The widest bracketed span is tried first, then each '[' in turn.

    Raises:
        ValueError: If no JSON array can be parsed
    """
    cleaned = strip_code_fences(text)
    match = re.search(r"\[[\s\S]*\]", cleaned)
    if not match:
        raise ValueError("No JSON array found in model response")
    try:
        parsed = json.loads(match.group(0))
        if isinstance(parsed, list):
            return parsed
    except json.JSONDecodeError:
        pass

    decoder = json.JSONDecoder()
    for position in (m.start() for m in re.finditer(r"\[", cleaned)):
        try:
            parsed, _ = decoder.raw_decode(cleaned, position)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, list):
            return parsed
    raise ValueError("Malformed JSON array in model response")


# =============================================================================
# Factory Functions
# =============================================================================

def create_chat_service(
    settings: Optional[Settings] = None,
    use_mock: bool = False,
    mock_rules: Optional[dict[str, MockReply]] = None,
) -> ChatServiceProtocol:
    """
    Factory function to create the chat service.

    Args:
        settings: Application settings
        use_mock: If True, returns a scripted mock service
        mock_rules: Rules for the mock (defaults answer every agent)

    Returns:
        A chat service instance
    """
    if use_mock:
        logger.info("Creating mock chat service")
        return MockChatService(rules=mock_rules if mock_rules is not None else default_mock_rules())

    logger.info("Creating Ollama chat service")
    return OllamaChatService(settings=settings)


def create_embeddings(
    settings: Optional[Settings] = None,
    use_mock: bool = False,
) -> Embeddings:
    """
    Factory function to create the embedding model.

    Args:
        settings: Application settings
        use_mock: If True, returns deterministic hashed embeddings

    Returns:
        A LangChain Embeddings instance
    """
    if use_mock:
        logger.info("Creating mock embeddings")
        return MockEmbeddings()

    settings = settings or get_settings()
    logger.info(f"Creating Ollama embeddings: {settings.embedding_model}")
    return OllamaEmbeddings(
        model=settings.embedding_model,
        base_url=settings.ollama_base_url,
    )
