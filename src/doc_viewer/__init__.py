"""
Document Viewer package.

Accepts document uploads through a validating intake gate and previews
stored documents (PDF, Word, images) through an asynchronous preview engine.
The FastAPI application lives in `doc_viewer.webapi`.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
