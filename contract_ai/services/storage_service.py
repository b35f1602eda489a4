"""Storage service for handling Supabase storage operations."""

from typing import Any, Dict, Optional

import httpx

from contract_ai.core.exceptions import StorageError
from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)


class StorageService:
    """Write-once upload of assembled documents to Supabase storage."""

    def __init__(
        self,
        url: str,
        service_role_key: str,
        bucket: str = "contract-chunks",
        timeout: int = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url.rstrip("/")
        self.service_role_key = service_role_key
        self.bucket = bucket
        self.timeout = timeout
        self.transport = transport
        self.base_api_url = f"{self.url}/storage/v1"
        self.headers = {
            "Authorization": f"Bearer {self.service_role_key}",
            "apikey": self.service_role_key,
        }

    @classmethod
    def from_settings(cls, supabase_settings) -> "StorageService":
        return cls(
            url=supabase_settings.url,
            service_role_key=supabase_settings.service_role_key,
            bucket=supabase_settings.bucket,
        )

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def upload_bytes(
        self,
        content: bytes,
        path: str,
        content_type: str = "application/pdf",
    ) -> Dict[str, Any]:
        """Upload raw bytes to the configured bucket.

        Args:
            content: File content
            path: Target path within the bucket
            content_type: MIME type sent with the upload

        Returns:
            Dict containing the upload result.

        Raises:
            StorageError: If the upload fails.
        """
        upload_url = f"{self.base_api_url}/object/{self.bucket}/{path}"

        try:
            async with self._build_client() as client:
                response = await client.post(
                    upload_url,
                    headers={**self.headers, "Content-Type": content_type},
                    content=content,
                )
        except httpx.HTTPError as e:
            LOGGER.error(f"Error uploading file to Supabase: {str(e)}", exc_info=True)
            raise StorageError(f"Storage upload error: {str(e)}", original_error=e) from e

        if response.status_code != 200:
            LOGGER.error(
                f"Failed to upload file to Supabase: {response.text}",
                extra={"bucket": self.bucket, "path": path, "status_code": response.status_code},
            )
            raise StorageError(f"Upload failed: {response.text}")

        LOGGER.info(
            "Uploaded document to storage",
            extra={"bucket": self.bucket, "path": path, "size_bytes": len(content)},
        )
        return response.json()

    async def get_signed_url(self, path: str, expires_in: int = 3600) -> str:
        """Generate a signed URL for an uploaded object.

        Raises:
            StorageError: If URL generation fails.
        """
        url = f"{self.base_api_url}/object/sign/{self.bucket}/{path}"

        try:
            async with self._build_client() as client:
                response = await client.post(
                    url,
                    headers=self.headers,
                    json={"expiresIn": expires_in},
                )
        except httpx.HTTPError as e:
            LOGGER.error(f"Error generating signed URL: {str(e)}", exc_info=True)
            raise StorageError(f"Signed URL error: {str(e)}", original_error=e) from e

        if response.status_code != 200:
            LOGGER.error(
                f"Failed to generate signed URL: {response.text}",
                extra={"bucket": self.bucket, "path": path, "status_code": response.status_code},
            )
            raise StorageError(f"Signed URL generation failed: {response.text}")

        signed_path = response.json().get("signedURL")
        if not signed_path:
            raise StorageError("Supabase response did not contain signedURL")

        # Supabase returns a relative path like /object/sign/<bucket>/<path>?token=...
        if signed_path.startswith("/storage/"):
            return f"{self.url}{signed_path}"
        if signed_path.startswith("/"):
            return f"{self.base_api_url}{signed_path}"
        return signed_path

    async def upload_and_sign(
        self,
        content: bytes,
        path: str,
        content_type: str = "application/pdf",
        expires_in: int = 3600,
    ) -> str:
        """Upload ``content`` and return a fetchable signed URL."""
        await self.upload_bytes(content, path, content_type)
        return await self.get_signed_url(path, expires_in)
