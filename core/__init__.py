"""
Core Processing Module
======================

Contains the pipeline and processing components for ExamScribe AI:
- pipeline: Examination orchestration (audio -> transcript -> note -> comparison)
- llm: Chat and embedding services
- speaker_attributor: Doctor/patient role assignment
- text_normalizer: Medical term correction
- knowledge_retriever: Protocol index for the Advisor
- clinical_agents / note_pipeline: Scribe -> {Coder, Advisor}
- comparison: AI vs clinician scoring
"""

from core.pipeline import ExaminationPipeline, create_pipeline
from core.comparison import ComparisonEngine
from core.knowledge_retriever import KnowledgeRetriever, create_knowledge_retriever
from core.note_pipeline import ClinicalNotePipeline, create_note_pipeline
from core.speaker_attributor import LLMSpeakerAttributor, create_speaker_attributor
from core.text_normalizer import TextNormalizer, create_text_normalizer

__all__ = [
    'ExaminationPipeline',
    'create_pipeline',
    'ComparisonEngine',
    'KnowledgeRetriever',
    'create_knowledge_retriever',
    'ClinicalNotePipeline',
    'create_note_pipeline',
    'LLMSpeakerAttributor',
    'create_speaker_attributor',
    'TextNormalizer',
    'create_text_normalizer',
]
