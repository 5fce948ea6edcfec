"""Frame-by-frame drawing of the star count video."""

import math
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from stars_video.jobs.models import Theme

WIDTH = 1280
HEIGHT = 720
FPS = 60
ANIMATION_SECONDS = 3
DURATION_FRAMES = (ANIMATION_SECONDS + 1) * FPS

PADDING = 64
HEADER_FONT_SIZE = 72
HEADER_AVATAR_SIZE = 90
COUNT_FONT_SIZE = 128
STARGAZER_AVATAR_SIZE = 128
STARGAZER_AVATAR_GAP = 16
STAR_SIZE = 32

# 24x24 viewBox star outline
_STAR_POINTS = [
    (12, 2), (15.09, 8.26), (22, 9.27), (17, 14.14), (18.18, 21.02),
    (12, 17.77), (5.82, 21.02), (7, 14.14), (2, 9.27), (8.91, 8.26),
]
STAR_FILL = (253, 224, 71)
STAR_STROKE = (234, 179, 8)

THEME_COLORS = {
    Theme.DARK: {"background": (10, 10, 10), "text": (255, 255, 255)},
    Theme.LIGHT: {"background": (255, 255, 255), "text": (0, 0, 0)},
}

_FONT_CANDIDATES = {
    False: ["arial.ttf", "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"],
    True: ["arialbd.ttf", "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"],
}


# ---------------------------------------------------------------------------
# Easing
# ---------------------------------------------------------------------------

def ease_elastic(t, bounciness: float = 1.0):
    """Elastic ease used for the sliding avatar strip."""
    t = np.asarray(t, dtype=float)
    p = bounciness * math.pi
    return 1 - np.cos(t * math.pi / 2) ** 3 * np.cos(t * p)


def ease_bezier(t, x1: float = 0.5, y1: float = 1.0, x2: float = 0.5, y2: float = 1.0, samples: int = 1001):
    """Cubic-bezier ease, solved by sampling the curve and interpolating on x."""
    s = np.linspace(0.0, 1.0, samples)
    xs = 3 * (1 - s) ** 2 * s * x1 + 3 * (1 - s) * s ** 2 * x2 + s ** 3
    ys = 3 * (1 - s) ** 2 * s * y1 + 3 * (1 - s) * s ** 2 * y2 + s ** 3
    return np.interp(t, xs, ys)


def animation_progress(frame: int, fps: int = FPS) -> float:
    """Linear 0..1 progress over the animation, clamped during the hold."""
    return min(1.0, max(0.0, frame / float(ANIMATION_SECONDS * fps)))


def star_count_at(frame: int, stars: int, start_from: int = 0) -> int:
    eased = float(ease_bezier(animation_progress(frame)))
    return int(round(start_from + (stars - start_from) * eased))


def avatar_offsets(frame: int, count: int, width: int = WIDTH) -> np.ndarray:
    """Left x position of every stargazer avatar at ``frame``."""
    step = STARGAZER_AVATAR_SIZE + STARGAZER_AVATAR_GAP
    start = STARGAZER_AVATAR_GAP + np.arange(count) * step
    shift = -count * step + width * 3 / 4
    return start + shift * ease_elastic(animation_progress(frame))


def format_star_count(value: int) -> str:
    return f"{value:,}"


# ---------------------------------------------------------------------------
# Drawing helpers
# ---------------------------------------------------------------------------

def get_font(size: int, bold: bool = False) -> ImageFont.ImageFont:
    """Try to load a TrueType font, falling back to Pillow's default."""
    for candidate in _FONT_CANDIDATES[bold]:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def circle_crop(image: Image.Image, size: int) -> Image.Image:
    """Resize to ``size`` and mask to a circle (4x supersampled edge)."""
    avatar = image.convert("RGBA").resize((size, size), Image.LANCZOS)
    big = size * 4
    mask = Image.new("L", (big, big), 0)
    ImageDraw.Draw(mask).ellipse((0, 0, big - 1, big - 1), fill=255)
    mask = mask.resize((size, size), Image.LANCZOS)
    avatar.putalpha(mask)
    return avatar


def placeholder_avatar(size: int) -> Image.Image:
    image = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    ImageDraw.Draw(image).ellipse((0, 0, size - 1, size - 1), fill=(120, 120, 120, 255))
    return image


def draw_star(draw: ImageDraw.ImageDraw, x: float, y: float, size: int = STAR_SIZE) -> None:
    scale = size / 24.0
    points = [(x + px * scale, y + py * scale) for px, py in _STAR_POINTS]
    draw.polygon(points, fill=STAR_FILL, outline=STAR_STROKE, width=max(1, round(2 * scale)))


@dataclass
class CompositionInput:
    user: str
    repository: str
    stars: int
    owner_avatar: Image.Image
    stargazer_avatars: List[Image.Image]
    theme: Theme = Theme.DARK


class StarsComposition:
    """Draws the frames of the star video.

    The header (owner avatar and ``user / repository``) is drawn once onto
    a base frame; each frame then adds the sliding avatars and the counter.
    """

    def __init__(self, data: CompositionInput, width: int = WIDTH, height: int = HEIGHT, fps: int = FPS):
        self.data = data
        self.width = width
        self.height = height
        self.fps = fps
        self.duration_in_frames = (ANIMATION_SECONDS + 1) * fps

        colors = THEME_COLORS[Theme(data.theme)]
        self._background = colors["background"]
        self._text_color = colors["text"]
        self._count_font = get_font(COUNT_FONT_SIZE, bold=True)
        self._label_font = get_font(COUNT_FONT_SIZE)
        self._header_height, self._base = self._draw_base()
        self._avatars = [circle_crop(a, STARGAZER_AVATAR_SIZE) for a in data.stargazer_avatars]

    def _draw_base(self) -> Tuple[int, Image.Image]:
        base = Image.new("RGB", (self.width, self.height), self._background)
        draw = ImageDraw.Draw(base)

        avatar = circle_crop(self.data.owner_avatar, HEADER_AVATAR_SIZE)
        base.paste(avatar, (PADDING, PADDING), avatar)

        font = get_font(HEADER_FONT_SIZE)
        bold = get_font(HEADER_FONT_SIZE, bold=True)
        center_y = PADDING + HEADER_AVATAR_SIZE / 2
        x = PADDING + HEADER_AVATAR_SIZE + 24

        draw.text((x, center_y), self.data.user, fill=self._text_color, font=font, anchor="lm")
        x += draw.textlength(self.data.user, font=font) + HEADER_FONT_SIZE * 0.25
        faded = tuple(int(c * 0.4 + b * 0.6) for c, b in zip(self._text_color, self._background))
        draw.text((x, center_y), "/", fill=faded, font=font, anchor="lm")
        x += draw.textlength("/", font=font) + HEADER_FONT_SIZE * 0.25
        draw.text((x, center_y), self.data.repository, fill=self._text_color, font=bold, anchor="lm")

        return PADDING * 2 + HEADER_AVATAR_SIZE, base

    def render_frame(self, frame: int) -> Image.Image:
        image = self._base.copy()
        draw = ImageDraw.Draw(image)

        top = self._header_height
        star_dx = (STARGAZER_AVATAR_SIZE - STAR_SIZE) / 2
        for avatar, left in zip(self._avatars, avatar_offsets(frame, len(self._avatars), self.width)):
            if left + STARGAZER_AVATAR_SIZE < 0 or left > self.width:
                continue
            x = int(round(left))
            image.paste(avatar, (x, top), avatar)
            draw_star(draw, x + star_dx, top + STARGAZER_AVATAR_SIZE + 16)

        self._draw_count(draw, star_count_at(frame, self.data.stars))
        return image

    def _draw_count(self, draw: ImageDraw.ImageDraw, value: int) -> None:
        number = format_star_count(value)
        label = " stars"
        baseline = self.height - PADDING
        right = self.width - PADDING
        label_width = draw.textlength(label, font=self._label_font)
        draw.text((right, baseline), label, fill=self._text_color, font=self._label_font, anchor="rs")
        draw.text((right - label_width, baseline), number, fill=self._text_color, font=self._count_font, anchor="rs")

    def frames(self, start: int = 0, end: Optional[int] = None) -> Iterator[Image.Image]:
        end = self.duration_in_frames if end is None else end
        for frame in range(start, end):
            yield self.render_frame(frame)
