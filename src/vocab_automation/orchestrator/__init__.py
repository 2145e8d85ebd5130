"""High-level orchestration helpers for the vocabulary pipeline."""

from .library import LibraryDatabase, LibraryService
from .export import document_filename, write_document
from .extraction import ExtractionOrchestrator, parse_data_url
from .flow import FlowConfig, build_flow_config, build_library_service, log_environment_banner

__all__ = [
    "LibraryDatabase",
    "LibraryService",
    "document_filename",
    "write_document",
    "ExtractionOrchestrator",
    "parse_data_url",
    "FlowConfig",
    "build_flow_config",
    "build_library_service",
    "log_environment_banner",
]
