class UsersK7Error(Exception):
    """Base class for usersk7 errors."""


# Encryption primitive
class CryptoError(UsersK7Error):
    pass


class MissingPasswordError(CryptoError):
    pass


class MalformedEncodingError(CryptoError):
    pass


class TruncatedError(CryptoError):
    pass


class DecryptFailedError(CryptoError):
    pass


# Archive codec stages
class CodecError(UsersK7Error):
    pass


class SerializeFailedError(CodecError):
    pass


class CompressFailedError(CodecError):
    pass


class EncryptFailedError(CodecError):
    pass


class DecompressFailedError(CodecError):
    pass


class ParseFailedError(CodecError):
    pass


# Record store collaborator
class StoreError(UsersK7Error):
    """Raised by a record store when a lookup or mutation fails."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


# Run gate
class ValidationError(UsersK7Error):
    pass


class InvalidArchiveNameError(ValidationError):
    pass


class ArchiveTooLargeError(ValidationError):
    pass


class EmptyArchiveError(ValidationError):
    pass
