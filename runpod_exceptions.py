class AlbumArchiveError(Exception):
    """Base class for exceptions in this project."""
    def __init__(self, message, error_code="INTERNAL_ERROR"):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)

class ValidationError(AlbumArchiveError):
    """Raised when the request input is missing or malformed."""
    def __init__(self, message):
        super().__init__(message, error_code="VALIDATION_ERROR")

class NotFoundError(AlbumArchiveError):
    """Raised when the catalog has no tracks for the album."""
    def __init__(self, message):
        super().__init__(message, error_code="NOT_FOUND")

class CatalogError(AlbumArchiveError):
    """Raised when the track catalog cannot be read."""
    def __init__(self, message):
        super().__init__(message, error_code="CATALOG_ERROR")

class TransientAssetError(AlbumArchiveError):
    """Raised when a single track cannot be fetched or transcoded. Never fatal."""
    def __init__(self, message, error_code="ASSET_ERROR"):
        super().__init__(message, error_code=error_code)

class AssetNotFoundError(TransientAssetError):
    """Raised when a source object does not exist in the content store."""
    def __init__(self, message):
        super().__init__(message, error_code="ASSET_NOT_FOUND")

class TranscodeError(TransientAssetError):
    """Raised when FFmpeg fails to encode a track."""
    def __init__(self, message):
        super().__init__(message, error_code="TRANSCODE_ERROR")

class FatalPipelineError(AlbumArchiveError):
    """Raised when the run cannot produce a published archive."""
    def __init__(self, message, error_code="PIPELINE_ERROR"):
        super().__init__(message, error_code=error_code)

class StorageError(FatalPipelineError):
    """Raised when there is an error during archive upload or URL signing (S3)."""
    def __init__(self, message):
        super().__init__(message, error_code="STORAGE_ERROR")

class StatusWriteError(FatalPipelineError):
    """Raised when the album_downloads row cannot be written."""
    def __init__(self, message):
        super().__init__(message, error_code="STATUS_WRITE_ERROR")

class EmptyArchiveError(FatalPipelineError):
    """Raised when no track could be packed and empty archives are refused."""
    def __init__(self, message):
        super().__init__(message, error_code="EMPTY_ARCHIVE")

class AlbumBusyError(FatalPipelineError):
    """Raised when another run holds the album lock for too long."""
    def __init__(self, message):
        super().__init__(message, error_code="ALBUM_BUSY")
