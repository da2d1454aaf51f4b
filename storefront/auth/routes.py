from fastapi import APIRouter, Depends

from storefront.auth.constants import logger
from storefront.auth.dependencies import get_auth_service
from storefront.auth.models import RegisterIn, ResetPasswordIn, VerifyOtpIn
from storefront.auth.services import AuthService
from storefront.common.constants import request_id_ctx
from storefront.common.result import ErrorCode, ServiceResult
from storefront.common.utils import error_response, success_response

auth_router = APIRouter()


def _to_response(result: ServiceResult):
    if result.success:
        body = {"message": result.message}
        if result.data:
            body.update(result.data)
        return success_response(body, result.http_status, request_id=request_id_ctx.get())

    headers = None
    if result.error_code is ErrorCode.TOO_MANY_REQUESTS and result.data:
        headers = {"Retry-After": str(result.data["retry_after"])}
    response = error_response(result.error_code.value, result.message, result.errors,
                              status_code=result.http_status, headers=headers,
                              request_id=request_id_ctx.get())
    return response


#* the code goes to the channel picked in otp_sent_channel, the account is only created after /verify-otp
@auth_router.post("/register")
async def register(payload: RegisterIn, auth_service: AuthService = Depends(get_auth_service)):

    result = await auth_service.start_registration(payload)
    if result.success:
        logger.info("register.otp_sent", extra={"contact": payload.contact})
    return _to_response(result)


@auth_router.post("/reset-password")
async def reset_password(payload: ResetPasswordIn, auth_service: AuthService = Depends(get_auth_service)):

    result = await auth_service.start_password_reset(payload)
    return _to_response(result)


@auth_router.post("/verify-otp")
async def verify_otp(payload: VerifyOtpIn, auth_service: AuthService = Depends(get_auth_service)):

    logger.info("verify_otp.attempt", extra={"contact": payload.contact, "otp_type": payload.otp_type.value})
    result = await auth_service.verify_and_complete(payload)
    if not result.success:
        logger.info("verify_otp.failed", extra={"contact": payload.contact,
                                                "error_code": result.error_code.value})
    return _to_response(result)
