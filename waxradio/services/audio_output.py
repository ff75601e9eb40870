from typing import Optional

from waxradio.logger import get_logger
from waxradio.ports import AudioOutput

logger = get_logger("audio_output")


class NullAudioOutput(AudioOutput):
    """Headless output that only tracks what it was told to do."""

    def __init__(self):
        self.url: Optional[str] = None
        self.playing = False
        self.position = 0.0

    def load(self, url: str) -> None:
        self.url = url
        self.playing = False
        self.position = 0.0
        logger.debug(f"Loaded source: {url}")

    async def play(self) -> None:
        self.playing = True

    def pause(self) -> None:
        self.playing = False

    def seek(self, seconds: float) -> None:
        self.position = seconds
