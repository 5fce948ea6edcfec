"""Video renderer: downloads avatars, draws the composition, encodes the MP4.

Synchronous on purpose; the lifecycle controller runs ``render`` in a
thread executor so the event loop keeps answering status polls.
"""

import io
import logging
from typing import List, Optional

import httpx
from PIL import Image, UnidentifiedImageError

from stars_video.jobs.models import StarData, Theme
from stars_video.rendering.composition import (
    STARGAZER_AVATAR_SIZE,
    CompositionInput,
    StarsComposition,
    placeholder_avatar,
)
from stars_video.rendering.encoder import FFmpegEncoder

logger = logging.getLogger(__name__)


class VideoRenderer:
    """Turns a ``StarData`` payload into an MP4 file."""

    def __init__(
        self,
        encoder: Optional[FFmpegEncoder] = None,
        avatar_timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.encoder = encoder or FFmpegEncoder()
        self._avatar_timeout = avatar_timeout
        self._transport = transport

    def render(self, star_data: StarData, theme: Theme, output_path: str) -> str:
        owner_avatar, stargazer_avatars = self._fetch_avatars(star_data)
        composition = StarsComposition(
            CompositionInput(
                user=star_data.user,
                repository=star_data.repository,
                stars=star_data.stars,
                owner_avatar=owner_avatar,
                stargazer_avatars=stargazer_avatars,
                theme=theme,
            )
        )
        logger.info(
            "Composition selected: %dx%d @ %d fps, %d frames",
            composition.width, composition.height, composition.fps, composition.duration_in_frames,
        )

        last_logged = [-1]

        def on_progress(done: int, total: int) -> None:
            decile = (done * 10) // total if total else 0
            if decile > last_logged[0]:
                last_logged[0] = decile
                logger.info("Rendering progress %d%%", decile * 10)

        return self.encoder.encode(
            composition.frames(),
            output_path,
            width=composition.width,
            height=composition.height,
            fps=composition.fps,
            total_frames=composition.duration_in_frames,
            on_progress=on_progress,
        )

    def _fetch_avatars(self, star_data: StarData):
        with httpx.Client(timeout=self._avatar_timeout, follow_redirects=True, transport=self._transport) as client:
            owner_avatar = self._load_image(client, star_data.user_avatar_url)
            stargazers: List[Image.Image] = [self._load_image(client, url) for url in star_data.stargazers]
        return owner_avatar, stargazers

    @staticmethod
    def _load_image(client: httpx.Client, url: str) -> Image.Image:
        """Fetch an avatar; unreachable or undecodable images become a grey placeholder."""
        if not url:
            return placeholder_avatar(STARGAZER_AVATAR_SIZE)
        try:
            response = client.get(url)
            response.raise_for_status()
            image = Image.open(io.BytesIO(response.content))
            image.load()
            return image
        except (httpx.HTTPError, UnidentifiedImageError, OSError) as exc:
            logger.warning("Could not load avatar %s (%s), using placeholder", url, exc)
            return placeholder_avatar(STARGAZER_AVATAR_SIZE)
