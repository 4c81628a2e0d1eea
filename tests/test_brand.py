from __future__ import annotations

from bizbox.side_effects.brand import BrandProfile, extract_brand_profile, format_style_prompt

VISUAL_IDENTITY = """## Colour Palette

- Primary: #0f766e (deep teal)
- Secondary: #F97316
- Accent colour #FACC15 for highlights
- Neutral: #1F2937

## Typography

Primary font: Poppins
Secondary font: Inter

Design mood: Warm, optimistic and approachable with rounded shapes.

## Generated Logo Files

**Logo Variation 1:**
- Download: https://img.test/logo-1.png
- File: logo-variation-1.png

**Logo Variation 2:**
- Download: https://img.test/logo-2.png
- File: logo-variation-2.png
"""


def test_pattern_extraction_from_prose():
    profile = extract_brand_profile(VISUAL_IDENTITY)

    assert profile.colors.primary == "#0F766E"
    assert profile.colors.secondary == "#F97316"
    assert profile.colors.neutral == "#1F2937"
    assert profile.colors.all == ["#0F766E", "#F97316", "#FACC15", "#1F2937"]
    assert profile.typography.primary == "Poppins"
    assert profile.typography.secondary == "Inter"
    assert profile.mood.startswith("Warm, optimistic")
    assert profile.logos.primary == "https://img.test/logo-1.png"
    assert profile.logos.variations == ["https://img.test/logo-1.png", "https://img.test/logo-2.png"]


def test_structured_json_block_takes_precedence():
    text = (
        "Some prose with #ABCDEF.\n\n```json\n"
        '{"colors": {"primary": "#111111", "secondary": "#222222"}, '
        '"typography": {"primary": "Lato"}, "mood": "Calm"}\n```\n'
    )

    profile = extract_brand_profile(text)

    assert profile.colors.all == ["#111111", "#222222"]
    assert profile.typography.all == ["Lato"]
    assert profile.mood == "Calm"


def test_invalid_json_block_falls_back_to_patterns():
    profile = extract_brand_profile("```json\n{not json}\n```\nPrimary: #123456")

    assert profile.colors.primary == "#123456"


def test_words_are_not_mistaken_for_colours():
    profile = extract_brand_profile("Add a bed and a cafe, see issue #12 and &#160;")

    assert profile.colors.all == []


def test_style_prompt_sections():
    prompt = format_style_prompt(extract_brand_profile(VISUAL_IDENTITY))

    assert prompt.startswith("BRAND IDENTITY SYSTEM:")
    assert "- Primary Logo URL: https://img.test/logo-1.png" in prompt
    assert "  - Variation 2: https://img.test/logo-2.png" in prompt
    assert "- Primary: #0F766E (use for buttons, links, CTAs)" in prompt
    assert "- Headings: Poppins" in prompt
    assert "DESIGN AESTHETIC:" in prompt


def test_style_prompt_empty_for_missing_profile():
    assert format_style_prompt(None) == ""
    assert format_style_prompt(BrandProfile()) == ""


def test_without_logos_keeps_colours():
    profile = extract_brand_profile(VISUAL_IDENTITY).without_logos()

    assert profile.logos.primary is None
    assert profile.colors.primary == "#0F766E"
    assert "BRAND LOGO" not in format_style_prompt(profile)
