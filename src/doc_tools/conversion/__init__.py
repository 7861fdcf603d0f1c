"""
Domain layer for document tools.
Provides gateways for external converters, the request-scoped staging area,
and a service that runs one transformation per request, so front-ends (HTTP
or others) can share the same orchestration.
"""

from .adapters import LocalStaging, PopplerRasterizer, RequestScope, SofficeConverter, cleanup_files
from .errors import AuthError, ConversionError, OperationError, PayloadTooLargeError, ValidationError
from .interfaces import (
    BufferResult,
    Err,
    FileResult,
    Ok,
    OfficeConverterGateway,
    OperationKind,
    RasterizerGateway,
    StagedFile,
    TransformRequest,
)
from .service import ToolService, friendly_message
