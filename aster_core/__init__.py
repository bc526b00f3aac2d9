"""
ASTER Core - document standardization and report generation with local LLMs
"""

from .version import __version__

from .metadata import UploadedFile, DocumentMetadata, build_metadata, new_standardization_id
from .documents import (
    DocumentFormat,
    StandardizedDocument,
    CsvDocument,
    SpreadsheetDocument,
    SheetData,
    SheetDimensions,
    MarkdownDocument,
    MarkdownData,
    MarkdownSection,
    JsonDocument,
    ErrorDocument,
    document_from_dict,
    usable_documents,
    select_documents,
)
from .standardizers import standardize, standardize_path, SUPPORTED_EXTENSIONS
from .optimizer import optimize, truncate_middle
from .context import AssembledContext, ContextBudget, assemble, compute_budget, sort_by_priority
from .config import (
    AsterConfig,
    InferenceConfig,
    StorageConfig,
    LoggingConfig,
    ReportConfig,
    load_config,
    save_config,
)
from .ollama_client import (
    InferenceClient,
    CancellationToken,
    InferenceError,
    BackendUnreachableError,
    BackendHTTPError,
    InferenceTimeoutError,
    InvalidResponseError,
    InferenceCancelled,
)
from .report import (
    BlockStatus,
    ReportBlock,
    export_report_json,
    export_report_markdown,
    export_filename,
)
from .orchestrator import (
    ReportOrchestrator,
    GenerationOutcome,
    GenerationResult,
    ReportParseError,
    ReportVerificationError,
    parse_block_array,
)
from .storage import (
    KeyValueStore,
    MemoryStore,
    JsonFileStore,
    StoreChange,
    load_inference_config,
    save_documents,
    load_documents,
    save_blocks,
    load_blocks,
)
from .logging_utils import ReportEventLog, configure_logging, mask_secrets

__all__ = [
    "__version__",
    # Metadata and documents
    "UploadedFile",
    "DocumentMetadata",
    "build_metadata",
    "new_standardization_id",
    "DocumentFormat",
    "StandardizedDocument",
    "CsvDocument",
    "SpreadsheetDocument",
    "SheetData",
    "SheetDimensions",
    "MarkdownDocument",
    "MarkdownData",
    "MarkdownSection",
    "JsonDocument",
    "ErrorDocument",
    "document_from_dict",
    "usable_documents",
    "select_documents",
    # Pipeline
    "standardize",
    "standardize_path",
    "SUPPORTED_EXTENSIONS",
    "optimize",
    "truncate_middle",
    "AssembledContext",
    "ContextBudget",
    "assemble",
    "compute_budget",
    "sort_by_priority",
    # Configuration
    "AsterConfig",
    "InferenceConfig",
    "StorageConfig",
    "LoggingConfig",
    "ReportConfig",
    "load_config",
    "save_config",
    # Inference
    "InferenceClient",
    "CancellationToken",
    "InferenceError",
    "BackendUnreachableError",
    "BackendHTTPError",
    "InferenceTimeoutError",
    "InvalidResponseError",
    "InferenceCancelled",
    # Report
    "BlockStatus",
    "ReportBlock",
    "export_report_json",
    "export_report_markdown",
    "export_filename",
    "ReportOrchestrator",
    "GenerationOutcome",
    "GenerationResult",
    "ReportParseError",
    "ReportVerificationError",
    "parse_block_array",
    # Storage and logging
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "StoreChange",
    "load_inference_config",
    "save_documents",
    "load_documents",
    "save_blocks",
    "load_blocks",
    "ReportEventLog",
    "configure_logging",
    "mask_secrets",
]
