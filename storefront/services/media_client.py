"""Media host (Cloudinary) upload client."""
import httpx
import logging
import time
from typing import Optional

from cloudinary.utils import api_sign_request

from storefront.config import (
    CLOUDINARY_API_KEY,
    CLOUDINARY_API_SECRET,
    CLOUDINARY_API_URL,
    CLOUDINARY_CLOUD_NAME,
    CLOUDINARY_FOLDER
)
from storefront.errors import UpstreamError
from storefront.monitoring import media_upload_duration_histogram

logger = logging.getLogger(__name__)


class MediaClient:
    """Uploads product images to Cloudinary through its signed upload API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cloud_name: Optional[str] = CLOUDINARY_CLOUD_NAME,
        api_key: Optional[str] = CLOUDINARY_API_KEY,
        api_secret: Optional[str] = CLOUDINARY_API_SECRET,
        folder: str = CLOUDINARY_FOLDER,
        api_url: str = CLOUDINARY_API_URL
    ):
        self.http_client = http_client
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret or ""
        self.folder = folder
        self.api_url = api_url.rstrip("/")

    async def upload_image(self, content: bytes, filename: str, content_type: Optional[str] = None) -> str:
        """
        Upload an image.

        Args:
            content: Image bytes
            filename: Original file name
            content_type: MIME type of the image

        Returns:
            HTTPS URL of the stored image

        Raises:
            UpstreamError: If the media host rejects the upload or is unreachable
        """
        params = {"folder": self.folder, "timestamp": int(time.time())}
        data = {**params, "api_key": self.api_key, "signature": api_sign_request(params, self.api_secret)}

        start_time = time.time()
        status = "success"
        try:
            response = await self.http_client.post(
                f"{self.api_url}/{self.cloud_name}/image/upload",
                data=data,
                files={"file": (filename, content, content_type or "application/octet-stream")}
            )
            if response.status_code != 200:
                status = "error"
                logger.warning("Media host returned non-200 status", extra={
                    "status_code": response.status_code,
                    "upload_filename": filename
                })
                raise UpstreamError("Image upload failed")

            url = response.json().get("secure_url")
            if not url:
                status = "error"
                raise UpstreamError("Image upload failed")
            return url
        except httpx.HTTPError as e:
            status = "error"
            logger.error("Failed to upload image", extra={
                "upload_filename": filename,
                "error": str(e)
            })
            raise UpstreamError("Image upload failed") from e
        finally:
            media_upload_duration_histogram.record(
                time.time() - start_time,
                {"status": status}
            )
