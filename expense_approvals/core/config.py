from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    app_name: str = Field("expense-approvals", alias="APP_NAME")
    app_env: str = Field("dev", alias="APP_ENV")

    # Persistence
    database_path: str = Field("expense_approvals.db", alias="DATABASE_PATH")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Users/managers are owned by an external system; an optional JSON export seeds the directory
    user_directory_file: str | None = Field(default=None, alias="USER_DIRECTORY_FILE")

    # Teams
    teams_webhook_url: str | None = Field(default=None, alias="TEAMS_WEBHOOK_URL")

    # API Base URL (for expense links in Teams cards)
    api_base_url: str = Field("http://127.0.0.1:8000", alias="API_BASE_URL")

    # CORS allowed origins (comma-separated list for production deployment)
    cors_origins: str = Field("http://localhost:3000,http://127.0.0.1:3000", alias="CORS_ORIGINS")

    # Service Bus (events are dropped when no connection string is configured)
    service_bus_connection_string: str | None = Field(default=None, alias="SERVICE_BUS_CONNECTION_STRING")
    service_bus_queue_name: str = Field("expense-events", alias="SERVICE_BUS_QUEUE_NAME")

    # Approval workflow
    require_rejection_comments: bool = Field(True, alias="REQUIRE_REJECTION_COMMENTS")
    decision_max_retries: int = Field(3, alias="DECISION_MAX_RETRIES")
    override_comment: str = Field("Overridden by admin", alias="OVERRIDE_COMMENT")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

settings = Settings()
