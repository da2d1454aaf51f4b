from storefront.common.logging_setup import get_logger

logger = get_logger("storefront.auth")

SPECIALS = set("!@#$%^&*()-_=+[]{};:'\",.<>/?\\|`~")

NAME_MAX_LENGTH = 50

PHONE_PATTERN = r"^[0-9]{10,11}$"

OTP_TEMPLATE = "otp"
WELCOME_TEMPLATE = "welcome"

REGISTRATION_OTP_SENT_MESSAGE = "Verification code sent. Please check your {channel}."
RESET_OTP_SENT_MESSAGE = "If an account exists for this contact, a verification code has been sent."
SEND_FAILED_MESSAGE = "Failed to send verification code. Please try again."
REGISTERED_MESSAGE = "User registered successfully."
PASSWORD_RESET_MESSAGE = "Password reset successfully."
