"""
Phân loại lỗi của pipeline tạo ảnh.

- ValidationError / ContentPolicyError: xảy ra trước khi cấp job id, trả về HTTP 400.
- AuthenticationError: thiếu hoặc sai API key của provider, user phải sửa cấu hình.
- ProviderError / ProviderTimeoutError / NetworkError: user thử lại sau.
"""

FIX_INPUT = "fix_input"
RETRY_LATER = "retry_later"


class PortraitError(Exception):
    error_type = "internal"
    status_code = 500
    retryable = False
    user_action = RETRY_LATER

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PortraitError):
    error_type = "validation"
    status_code = 400
    user_action = FIX_INPUT


class ContentPolicyError(PortraitError):
    error_type = "content_policy"
    status_code = 400
    user_action = FIX_INPUT


class AuthenticationError(PortraitError):
    error_type = "authentication"
    status_code = 401
    user_action = FIX_INPUT


class ProviderError(PortraitError):
    error_type = "provider"
    status_code = 502
    retryable = True


class ProviderTimeoutError(PortraitError):
    error_type = "timeout"
    status_code = 504
    retryable = True


class NetworkError(PortraitError):
    error_type = "network"
    status_code = 502
    retryable = True
