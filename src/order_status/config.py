"""Application configuration via pydantic-settings BaseSettings."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Typed settings for environment-driven configuration."""

    # Shopify Admin API; both values are needed for any upstream call
    shopify_store: str | None = None
    shopify_access_token: str | None = None
    shopify_api_version: str = "2024-01"
    shopify_timeout: float = 10.0
    shopify_completion_tag: str = "order_complete"

    # sqlite:///./order_status.db, or memory:// for a non-durable local store
    store_url: str = "sqlite:///./order_status.db"

    # Read policy: create a default record for unknown orders instead of 404
    auto_create_orders: bool = True
    validate_status: bool = True

    upload_url_template: str = "https://lookbook.bellavirtualstaging.com/upload/{project_id}"
    delivery_url_template: str = "https://lookbook.bellavirtualstaging.com/delivery/{project_id}"
    revision_url_template: str = (
        "https://lookbook.bellavirtualstaging.com/revision/{project_id}?revision={revision_number}"
    )

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def shopify_configured(self) -> bool:
        return bool(self.shopify_store and self.shopify_access_token)

    def url_templates(self) -> dict[str, str]:
        return {
            "upload_photo": self.upload_url_template,
            "check_delivery": self.delivery_url_template,
            "check_revision": self.revision_url_template,
        }


settings = Settings()
