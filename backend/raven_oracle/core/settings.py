import os


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.port = _getenv_int("PORT", 8080)

        # No DATABASE_URL means the in-memory ledger.
        self.database_url = _getenv("DATABASE_URL")
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)

        self.rpc_url = _getenv("RPC_URL", "https://sepolia.infura.io/v3/YOUR_INFURA_KEY")
        self.raven_access_address = _getenv("RAVEN_ACCESS_ADDRESS", ZERO_ADDRESS) or ZERO_ADDRESS
        self.oracle_private_key = _getenv("ORACLE_PRIVATE_KEY")

        self.batch_interval_ms = _getenv_int("BATCH_INTERVAL_MS", 60 * 60 * 1000)
        self.confirmation_timeout_s = _getenv_int("CONFIRMATION_TIMEOUT_SECONDS", 300)
        self.confirmation_poll_s = float(_getenv("CONFIRMATION_POLL_SECONDS", "2") or "2")
        self.initial_grant_credits = _getenv_int("INITIAL_GRANT_CREDITS", 50)

        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")
        self.operator_auth_enabled = _getenv_bool(
            "OPERATOR_AUTH_ENABLED",
            default=(self.environment == "production"),
        )
        self.operator_username = _getenv("OPERATOR_USERNAME")
        self.operator_password = _getenv("OPERATOR_PASSWORD")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def contract_configured(self) -> bool:
        addr = (self.raven_access_address or "").lower()
        return bool(addr) and addr != ZERO_ADDRESS

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["*"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()
