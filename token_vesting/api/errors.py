"""
Error translation for the HTTP layer
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from ..exceptions import ErrorKind, VestingError, TransferError
from ..logging_config import get_logger


logger = get_logger("vesting.api")

STATUS_BY_KIND = {
    ErrorKind.INVALID_BENEFICIARY: 400,
    ErrorKind.INVALID_AMOUNT: 400,
    ErrorKind.INVALID_DURATION: 400,
    ErrorKind.INVALID_CLIFF: 400,
    ErrorKind.INSUFFICIENT_FUNDS: 400,
    ErrorKind.FEE_TOO_HIGH: 400,
    ErrorKind.INVALID_ADDRESS: 400,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.NO_SCHEDULE: 404,
    ErrorKind.INDEX_OUT_OF_BOUNDS: 404,
    ErrorKind.DUPLICATE_SCHEDULE: 409,
    ErrorKind.NOTHING_RELEASABLE: 422,
    ErrorKind.NOT_REVOCABLE: 422,
}


def status_for(error: VestingError) -> int:
    return STATUS_BY_KIND.get(error.kind, 400)


async def vesting_error_handler(request: Request, exc: VestingError) -> JSONResponse:
    """Rejected ledger operations become 4xx responses with the error kind"""
    return JSONResponse(status_code=status_for(exc), content={"detail": exc.to_dict()})


async def transfer_error_handler(request: Request, exc: TransferError) -> JSONResponse:
    """A failed payout was rolled back; surface it as a gateway error"""
    logger.error(f"Transfer failed on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": {
        "error": "TransferFailed",
        "message": str(exc),
        "details": {"recipient": exc.recipient, "amount": str(exc.amount)}
    }})


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Malformed request values (e.g. non-numeric amounts)"""
    return JSONResponse(status_code=400, content={"detail": str(exc)})
