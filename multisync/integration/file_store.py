"""
Stages user files with the OpenAI Files API for file-attached flows
"""
import logging
import mimetypes
from pathlib import Path
from typing import Optional

import openai

from multisync.core.errors import FileUploadError

logger = logging.getLogger(__name__)

FILE_PURPOSE = "user_data"


def guess_mime_type(file_name: str) -> str:
    mime_type, _ = mimetypes.guess_type(str(file_name or ""))
    return mime_type or "application/octet-stream"


class OpenAIFileStore:
    """Uploads and removes files used as flow attachments"""

    def __init__(self, api_key: str, client: Optional[openai.AsyncOpenAI] = None):
        self.client = client or openai.AsyncOpenAI(api_key=api_key)

    async def create_from_path(self, path: Path) -> str:
        try:
            with open(path, "rb") as handle:
                uploaded = await self.client.files.create(file=handle, purpose=FILE_PURPOSE)
        except (OSError, openai.OpenAIError) as e:
            raise FileUploadError(f"Failed to upload file: {e}") from e
        logger.info(f"Uploaded {path} as {uploaded.id}")
        return uploaded.id

    async def create_from_bytes(self, data: bytes, file_name: str,
                                mime_type: Optional[str] = None) -> str:
        content_type = mime_type or guess_mime_type(file_name)
        try:
            uploaded = await self.client.files.create(
                file=(file_name, data, content_type), purpose=FILE_PURPOSE
            )
        except openai.OpenAIError as e:
            raise FileUploadError(f"Failed to upload file: {e}") from e
        logger.info(f"Uploaded {file_name} ({content_type}) as {uploaded.id}")
        return uploaded.id

    async def delete(self, file_id: str):
        await self.client.files.delete(file_id)

    async def delete_quietly(self, file_id: str):
        """Delete a staged file, logging instead of raising on failure"""
        try:
            await self.delete(file_id)
        except openai.OpenAIError as e:
            logger.warning(f"Failed to delete uploaded file {file_id}: {e}")
