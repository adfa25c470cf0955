"""Core business logic.

Gradebook:
- models, grade_entry: grid records and cell entry
- grade_statistics, risk, analytics: derived figures
- export: CSV and JSON exports

Knowledge base:
- knowledge_base: ingestion and the local document list
- document_processing: text extraction and chunking functions

Content generation:
- lesson_generation: streamed lesson content generation
- generation_jobs: polled background jobs (mind maps)
- progress_stream: event decoding and client-side progress state
- progress: learner progress through a base class
"""

__all__ = [
    "analytics",
    "document_processing",
    "export",
    "grade_entry",
    "grade_statistics",
    "generation_jobs",
    "knowledge_base",
    "lesson_generation",
    "models",
    "progress",
    "progress_stream",
    "risk",
]
