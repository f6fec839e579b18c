"""
Google Cloud Storage upload of finalized session recordings.
"""
import logging
from typing import Optional

from google.api_core import exceptions as gexc
from google.cloud import storage

from ...interview.errors import UploadError
from ...interview.models import MediaBlob

logger = logging.getLogger("gcs_storage")


class GcsObjectStorage:
    def __init__(self, bucket_name: str, client: Optional[storage.Client] = None):
        if not bucket_name:
            raise ValueError("A storage bucket name is required")
        self.bucket_name = bucket_name
        self._client = client

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client()
        return self._client

    def upload(self, blob: MediaBlob, key: str) -> str:
        """
        Returns:
            ``gs://`` URI of the stored object

        Raises:
            UploadError: The bucket rejected the object
        """
        try:
            obj = self.client.bucket(self.bucket_name).blob(key)
            obj.upload_from_string(blob.data, content_type=blob.mime_type.split(";")[0])
        except gexc.GoogleAPICallError as e:
            raise UploadError(str(e), status_code=getattr(e, "code", None)) from e
        uri = f"gs://{self.bucket_name}/{key}"
        logger.debug("Stored %d bytes at %s", blob.size, uri)
        return uri
