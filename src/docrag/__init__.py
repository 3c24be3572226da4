"""Question answering over long documents through a remote completion service."""

from docrag.config import PipelineSettings
from docrag.models import Document, DocumentType, PreparedDocument
from docrag.pipeline import DocumentPipeline

__all__ = ["Document", "DocumentPipeline", "DocumentType", "PipelineSettings", "PreparedDocument"]
