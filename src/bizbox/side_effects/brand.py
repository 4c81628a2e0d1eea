"""Brand profile extraction from the visual identity output."""

from __future__ import annotations

import json
import logging
import re
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError


LOGGER = logging.getLogger("bizbox.brand")

JSON_BLOCK = re.compile(r"```json\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)
HEX_COLOR = re.compile(r"(?<![&\w])#([0-9A-Fa-f]{6}|[0-9A-Fa-f]{3})\b")
LABELLED_COLOR = "{label}[:\\s*]+#?([0-9A-Fa-f]{{6}})\\b"
FONT_LABEL = re.compile(r"(?:font|typeface|typography)\s*[:*]+\s*[\"']?([A-Za-z ]+)[\"']?", re.IGNORECASE)
MOOD_PATTERNS = (
    re.compile(r"(?:design\s+mood|aesthetic|vibe)[:\s*]+(.+?)(?:\n\n|\n#|$)", re.IGNORECASE | re.DOTALL),
    re.compile(r"##\s*(?:design\s+mood|aesthetic|style)\s*\n+(.+?)(?:\n\n|\n#|$)", re.IGNORECASE | re.DOTALL),
)
DOWNLOAD_URL = re.compile(r"Download:\s+(https?://[^\s)]+)")

COMMON_FONTS = (
    "Inter", "Roboto", "Open Sans", "Lato", "Montserrat", "Poppins", "Raleway", "Nunito",
    "Playfair Display", "Merriweather", "PT Sans", "Source Sans Pro", "Oswald", "Ubuntu",
    "Noto Sans", "Helvetica", "Arial", "Georgia", "Work Sans", "Rubik", "Karla", "DM Sans",
    "Space Grotesk", "Outfit", "Plus Jakarta Sans",
)
MOOD_LIMIT = 200


class BrandColors(BaseModel):
    primary: Optional[str] = None
    secondary: Optional[str] = None
    accent: Optional[str] = None
    neutral: Optional[str] = None
    all: List[str] = Field(default_factory=list)


class BrandTypography(BaseModel):
    primary: Optional[str] = None
    secondary: Optional[str] = None
    all: List[str] = Field(default_factory=list)


class BrandLogos(BaseModel):
    primary: Optional[str] = None
    variations: List[str] = Field(default_factory=list)


class BrandProfile(BaseModel):
    colors: BrandColors = Field(default_factory=BrandColors)
    typography: BrandTypography = Field(default_factory=BrandTypography)
    mood: Optional[str] = None
    logos: BrandLogos = Field(default_factory=BrandLogos)

    @property
    def is_empty(self) -> bool:
        return not (self.colors.all or self.typography.all or self.mood or self.logos.variations)

    def without_logos(self) -> "BrandProfile":
        return self.model_copy(update={"logos": BrandLogos()})


def extract_brand_profile(text: str) -> BrandProfile:
    """
    Build a :class:`BrandProfile` from generated visual identity text.

    A fenced ``json`` block that validates against the profile schema wins;
    otherwise colours, fonts and mood are pattern-matched out of the prose.
    Logo URLs always come from the ``Download:`` lines the logo fan-out appends.
    """

    profile = _structured_profile(text) or _pattern_profile(text)
    logos = _extract_logos(text)
    if logos.variations:
        profile = profile.model_copy(update={"logos": logos})
    LOGGER.debug(
        "Brand profile: %d colours, %d fonts, %d logos",
        len(profile.colors.all),
        len(profile.typography.all),
        len(profile.logos.variations),
    )
    return profile


def _structured_profile(text: str) -> Optional[BrandProfile]:
    for match in JSON_BLOCK.finditer(text):
        try:
            payload = json.loads(match.group(1))
            profile = BrandProfile.model_validate(payload)
        except (json.JSONDecodeError, ValidationError) as exc:
            LOGGER.debug("Ignoring brand json block: %s", exc)
            continue
        if not profile.colors.all:
            colors = profile.colors
            profile.colors.all = [c for c in (colors.primary, colors.secondary, colors.accent, colors.neutral) if c]
        if not profile.typography.all:
            profile.typography.all = [f for f in (profile.typography.primary, profile.typography.secondary) if f]
        if not profile.is_empty:
            return profile
    return None


def _pattern_profile(text: str) -> BrandProfile:
    return BrandProfile(colors=_extract_colors(text), typography=_extract_fonts(text), mood=_extract_mood(text))


def _extract_colors(text: str) -> BrandColors:
    found: List[str] = []
    for match in HEX_COLOR.finditer(text):
        value = f"#{match.group(1).upper()}"
        if value not in found:
            found.append(value)

    colors = BrandColors(all=found)
    for label in ("primary", "secondary", "accent", "neutral"):
        labelled = re.search(LABELLED_COLOR.format(label=label), text, re.IGNORECASE)
        if labelled:
            setattr(colors, label, f"#{labelled.group(1).upper()}")

    fallbacks = iter(found)
    for label in ("primary", "secondary", "accent", "neutral"):
        if getattr(colors, label):
            continue
        for candidate in fallbacks:
            if candidate not in (colors.primary, colors.secondary, colors.accent, colors.neutral):
                setattr(colors, label, candidate)
                break
    return colors


def _extract_fonts(text: str) -> BrandTypography:
    fonts: List[str] = []

    def add(name: str) -> None:
        name = name.strip()
        if 2 < len(name) < 30 and name.lower() not in (font.lower() for font in fonts):
            fonts.append(name)

    for match in FONT_LABEL.finditer(text):
        add(match.group(1))
    for font in COMMON_FONTS:
        if re.search(rf"\b{re.escape(font)}\b", text, re.IGNORECASE):
            add(font)

    typography = BrandTypography(all=fonts)
    primary = re.search(r"primary\s+font[:\s*]+[\"']?([A-Za-z ]+)[\"']?", text, re.IGNORECASE)
    secondary = re.search(r"secondary\s+font[:\s*]+[\"']?([A-Za-z ]+)[\"']?", text, re.IGNORECASE)
    typography.primary = primary.group(1).strip() if primary else (fonts[0] if fonts else None)
    typography.secondary = secondary.group(1).strip() if secondary else (fonts[1] if len(fonts) > 1 else None)
    return typography


def _extract_mood(text: str) -> Optional[str]:
    for pattern in MOOD_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        mood = re.sub(r"[*_`]", "", match.group(1)).strip()
        if not mood:
            continue
        if len(mood) > MOOD_LIMIT:
            mood = mood[:MOOD_LIMIT].rstrip() + "..."
        return mood
    return None


def _extract_logos(text: str) -> BrandLogos:
    urls = []
    for match in DOWNLOAD_URL.finditer(text):
        url = match.group(1).strip()
        parsed = urlparse(url)
        if parsed.scheme in ("http", "https") and parsed.netloc and url not in urls:
            urls.append(url)
    return BrandLogos(primary=urls[0] if urls else None, variations=urls)


def format_style_prompt(profile: Optional[BrandProfile]) -> str:
    """Render *profile* as style instructions for the site-deploy service."""

    if profile is None or profile.is_empty:
        return ""

    parts = ["BRAND IDENTITY SYSTEM:"]
    logos = profile.logos
    if logos.primary:
        parts.append("\nBRAND LOGO:")
        parts.append(f"- Primary Logo URL: {logos.primary}")
        parts.append(f'- Display this logo in the header using: <img src="{logos.primary}" alt="Logo" />')
        parts.append("- Do not create placeholder logos; use the provided URL")
        for index, url in enumerate(logos.variations[1:3], start=2):
            parts.append(f"  - Variation {index}: {url}")

    colors = profile.colors
    if colors.all:
        parts.append("\nBRAND COLORS:")
        roles = (
            ("Primary", colors.primary, "buttons, links, CTAs"),
            ("Secondary", colors.secondary, "accents, highlights"),
            ("Accent", colors.accent, "sparingly for emphasis"),
            ("Neutral", colors.neutral, "text, backgrounds"),
        )
        for label, value, usage in roles:
            if value:
                parts.append(f"- {label}: {value} (use for {usage})")
        named = {value for _, value, _ in roles if value}
        remaining = [value for value in colors.all if value not in named]
        if remaining:
            parts.append(f"- Additional: {', '.join(remaining)}")
        parts.append("- Apply these exact hex codes in the Tailwind config and inline styles")

    typography = profile.typography
    if typography.all:
        parts.append("\nTYPOGRAPHY:")
        if typography.primary:
            parts.append(f"- Headings: {typography.primary}")
        if typography.secondary:
            parts.append(f"- Body: {typography.secondary}")
        parts.append(f"- Example: font-family: '{typography.primary or 'Inter'}', sans-serif")

    if profile.mood:
        parts.append("\nDESIGN AESTHETIC:")
        parts.append(profile.mood)

    return "\n".join(parts)
