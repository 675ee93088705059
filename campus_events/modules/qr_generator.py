"""
QR Code Generator Module - Campus Events

This module mints and parses attendee QR tokens and renders them as PNG
images. Tokens are plain strings of the form

    ATTEND-<eventId>-<userId>-<timestampMillis>

and carry no signature; verification relies on the token matching the one
stored on the attendee record verbatim.

Features:
- Attendee token minting and parsing
- QR code image generation (base64 PNG)
- Optional caption overlay with attendee details
- Download filename convention
"""

import base64
import io
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import qrcode
from PIL import Image, ImageDraw, ImageFont

from campus_events.modules.exceptions import InvalidTokenFormat

TOKEN_PREFIX = 'ATTEND-'
TOKEN_SEPARATOR = '-'


@dataclass(frozen=True)
class ParsedToken:
    """Fields recovered from an attendee token."""
    event_id: str
    user_id: str
    timestamp: str
    raw: str


class QRGenerator:
    """
    QR token and image generator for attendee check-in codes.
    """

    def __init__(self, settings: Optional[dict] = None):
        """
        Initialize the QR code generator.

        Args:
            settings (dict): Overrides for the image settings
        """
        self.logger = logging.getLogger(__name__)

        self.default_settings = {
            'version': 1,  # Controls the size of the QR Code
            'error_correction': qrcode.constants.ERROR_CORRECT_M,  # ~15% error correction
            'box_size': 10,
            'border': 4,
            'fill_color': 'black',
            'back_color': 'white'
        }
        if settings:
            self.default_settings.update(settings)

    @staticmethod
    def mint_token(event_id: str, user_id: str, now: datetime) -> str:
        """
        Build the attendee token for an (event, user) pair.

        Args:
            event_id (str): Event id
            user_id (str): User id
            now (datetime): Issue time, encoded in milliseconds

        Returns:
            str: Token string
        """
        timestamp_millis = int(now.timestamp() * 1000)
        return f"{TOKEN_PREFIX}{event_id}{TOKEN_SEPARATOR}{user_id}{TOKEN_SEPARATOR}{timestamp_millis}"

    @staticmethod
    def parse_token(token: str) -> ParsedToken:
        """
        Split a token into its positional fields.

        Ids containing hyphens are not supported: the remainder after the
        prefix is split on every hyphen and read positionally.

        Args:
            token (str): Scanned token

        Returns:
            ParsedToken: Event id, user id and timestamp

        Raises:
            InvalidTokenFormat: Prefix missing or fewer than three fields
        """
        if not isinstance(token, str) or not token.startswith(TOKEN_PREFIX):
            raise InvalidTokenFormat()

        parts = token[len(TOKEN_PREFIX):].split(TOKEN_SEPARATOR)
        if len(parts) < 3:
            raise InvalidTokenFormat()

        event_id, user_id, timestamp = parts[0], parts[1], parts[2]
        return ParsedToken(event_id=event_id, user_id=user_id, timestamp=timestamp, raw=token)

    def generate_qr_image(self, token: str, caption_lines: Optional[List[str]] = None) -> dict:
        """
        Render a token as a QR code PNG.

        Args:
            token (str): Data to encode
            caption_lines (List[str]): Text printed under the code

        Returns:
            dict: ``image_base64`` and ``image_size`` of the rendered PNG
        """
        settings = self.default_settings

        qr = qrcode.QRCode(
            version=settings['version'],
            error_correction=settings['error_correction'],
            box_size=settings['box_size'],
            border=settings['border']
        )
        qr.add_data(token)
        qr.make(fit=True)

        img = qr.make_image(
            fill_color=settings['fill_color'],
            back_color=settings['back_color']
        ).convert('RGB')

        if caption_lines:
            img = self._add_caption_overlay(img, caption_lines)

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        img_base64 = base64.b64encode(buffer.getvalue()).decode()

        self.logger.info(f"QR code image generated for token {token}")
        return {
            'image_base64': img_base64,
            'image_size': img.size
        }

    def _add_caption_overlay(self, qr_img: Image.Image, lines: List[str]) -> Image.Image:
        """
        Add caption lines below the QR code image.

        Args:
            qr_img (Image.Image): QR code image
            lines (List[str]): Caption lines, first one drawn larger

        Returns:
            Image.Image: QR code with caption
        """
        try:
            width, height = qr_img.size
            new_img = Image.new('RGB', (width, height + 25 * len(lines) + 10), 'white')
            new_img.paste(qr_img, (0, 0))

            draw = ImageDraw.Draw(new_img)

            try:
                font_large = ImageFont.truetype("arial.ttf", 16)
                font_small = ImageFont.truetype("arial.ttf", 12)
            except (IOError, OSError):
                font_large = ImageFont.load_default()
                font_small = ImageFont.load_default()

            text_y = height + 5
            for index, line in enumerate(lines):
                font = font_large if index == 0 else font_small
                bbox = draw.textbbox((0, 0), line, font=font)
                line_width = bbox[2] - bbox[0]
                draw.text(((width - line_width) // 2, text_y), line, fill='black', font=font)
                text_y += 25

            return new_img

        except Exception as e:
            self.logger.warning(f"Failed to add caption, returning plain QR code: {str(e)}")
            return qr_img

    @staticmethod
    def qr_image_filename(event_title: str, attendee_name: str) -> str:
        return f"{event_title}-{attendee_name}-QR.png"
