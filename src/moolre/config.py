from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="MOOLRE_", extra="ignore")

    api_base_url: str = "https://api.moolre.com"
    api_user: str | None = None
    api_key: str | None = None
    account_number: str | None = None
    sms_api_key: str | None = None
    sms_sender_id: str = "Moolre"
    request_timeout: float = 20.0

    default_currency: str = "GHS"
    initial_poll_delay: float = 3.0
    repoll_delay: float = 5.0
    # 0 keeps polling a pending bank transfer forever
    max_status_checks: int = 20

    rate_limit: str = "60/minute"

    def missing_transact_credentials(self) -> list[str]:
        required = {
            "MOOLRE_API_USER": self.api_user,
            "MOOLRE_API_KEY": self.api_key,
            "MOOLRE_ACCOUNT_NUMBER": self.account_number,
        }
        return [name for name, value in required.items() if not value]

    def missing_sms_credentials(self) -> list[str]:
        return [] if self.sms_api_key else ["MOOLRE_SMS_API_KEY"]


setting = Settings()
