import enum

# ── Token lifetimes (overridable through Settings) ──────────────────────────
ACCESS_TOKEN_EXPIRE_SECONDS: int = 900          # 15 minutes
REFRESH_TOKEN_EXPIRE_SECONDS: int = 86_400 * 7  # 7 days

# ── One-time secrets ─────────────────────────────────────────────────────────
EMAIL_VERIFY_EXPIRE_HOURS: int = 24
RESET_CODE_EXPIRE_MINUTES: int = 15
RESET_CODE_LENGTH: int = 6
RESET_CODE_MAX_LENGTH: int = 12  # keeps the code within a sane integer range
OPAQUE_TOKEN_BYTES: int = 32     # 256-bit email-verification link token

# ── Token types embedded in the `typ` claim ──────────────────────────────────
ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


# ── One-time secret tables ────────────────────────────────────────────────────
class EntryKind(str, enum.Enum):
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"
