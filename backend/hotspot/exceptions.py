"""
Gateway error taxonomy.

Each error carries the HTTP status it is rendered with by the exception
handler registered in main.py. EnforcementFailure is never rendered: the
enforcement service logs it and carries on.
"""


class GatewayError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.__class__.__name__)
        self.message = str(self)

    @property
    def name(self) -> str:
        return self.__class__.__name__


class IdentityUnresolved(GatewayError):
    """Could not map the client address to a hardware id"""
    status_code = 400


class ValidationError(GatewayError):
    """Malformed request"""
    status_code = 400


class SessionNotFound(GatewayError):
    """No session holds this token"""
    status_code = 404


class TokenExpired(GatewayError):
    """Session token has expired"""
    status_code = 401


class TransferDenied(GatewayError):
    """Voucher sessions cannot move to another device"""
    status_code = 403


class EnforcementFailure(GatewayError):
    """OS-level rule mutation failed"""
    status_code = 500


class CoinSlotBusy(GatewayError):
    """Coin slot is held by another device"""
    status_code = 409


class NoCoinClaim(GatewayError):
    """No device is waiting for coins"""
    status_code = 409
