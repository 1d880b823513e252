"""
Domain layer for PDF rasterization.
Provides interfaces (gateways), source acquisition, the conversion dispatcher
and response assembly so the HTTP front-end stays a thin routing layer.
"""

from .acquire import SourceAcquirer, sniff_mime
from .errors import ConversionError, FetchError, InvalidInput, ServiceError, StorageError, UploadError
from .interfaces import (
    ConversionResult,
    FetcherGateway,
    OutputMode,
    RasterizerGateway,
    StoredSourceFile,
    UploadDescriptor,
    UploadErrorCode,
)
from .response import assemble
from .sanitize import sanitize_filename
from .service import ConversionService, HandleAlreadyCompleted, ResponseHandle
