"""PDF ingestion pipeline.

Stages, in order:

1. **Split** (pdf_processor.py) -- validate the PDF, hash it and cut it into
   page-range batches.
2. **Extract** (batch_processor.py, prompts.py) -- send each batch to the
   document-AI provider with the extraction prompt, under the shared rate
   limiter and retry policy.
3. **Parse** (extraction_parser.py) -- turn the reply into typed chunk
   candidates, with a marked-text fallback when structured output is off.
4. **Enrich** (enrichment.py) -- optionally prepend situating context.
5. **Embed and store** (embedding_pipeline.py) -- vectorise and persist.

IngestionOrchestrator (batch_orchestrator.py) drives the whole flow and the
retry of failed batches.
"""

from src.services.ingestion.batch_orchestrator import IngestionOrchestrator
from src.services.ingestion.batch_processor import BatchProcessor
from src.services.ingestion.embedding_pipeline import EmbeddingPipeline
from src.services.ingestion.extraction_parser import ExtractionParser
from src.services.ingestion.pdf_processor import PdfProcessor

__all__ = [
    "BatchProcessor",
    "EmbeddingPipeline",
    "ExtractionParser",
    "IngestionOrchestrator",
    "PdfProcessor",
]
