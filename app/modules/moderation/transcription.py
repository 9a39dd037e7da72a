"""Audio transcription for moderation."""

from typing import Optional

from openai import AsyncOpenAI

from app.core.config import settings
from app.modules.moderation.exceptions import TranscriptionError


class AudioTranscriber:
    """Wrapper around the OpenAI transcription endpoint."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.model = model or settings.OPENAI_TRANSCRIPTION_MODEL
        self._client: Optional[AsyncOpenAI] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise TranscriptionError("OpenAI API key not configured")
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def transcribe(self, audio_path: str) -> str:
        """Transcribe an audio file.

        Raises:
            TranscriptionError: If the API call fails
        """
        try:
            with open(audio_path, "rb") as audio_file:
                response = await self.client.audio.transcriptions.create(
                    model=self.model,
                    file=audio_file,
                )
        except TranscriptionError:
            raise
        except Exception as e:
            raise TranscriptionError(f"Transcription failed: {str(e)}") from e
        return (response.text or "").strip()
