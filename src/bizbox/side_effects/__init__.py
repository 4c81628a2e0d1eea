from .brand import BrandProfile, extract_brand_profile, format_style_prompt
from .handlers import LogoFanOutHandler, SitePublishHandler, default_registry
from .registry import SideEffectContext, SideEffectHandler, SideEffectRegistry, SideEffectResult, Trigger

__all__ = [
    "BrandProfile",
    "LogoFanOutHandler",
    "SideEffectContext",
    "SideEffectHandler",
    "SideEffectRegistry",
    "SideEffectResult",
    "SitePublishHandler",
    "Trigger",
    "default_registry",
    "extract_brand_profile",
    "format_style_prompt",
]
