import os
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol
from jinja2 import Environment
from markupsafe import Markup
from PIL import Image, ImageDraw, ImageFont
from inkframe.models.plugin import Plugin
from inkframe.services import mashup
from inkframe.services.activation import local_now
from inkframe.services.geometry import ImageSettings
from inkframe.services.html_renderer import HtmlRenderError, PlaywrightHtmlRenderer
from inkframe.services.rasterizer import RasterizationError, load_image, wants_dither
from inkframe.services.templating import TemplateRenderError, TemplateRenderer, default_renderer

FRAMEWORK_CSS_URL = os.getenv("INKFRAME_FRAMEWORK_CSS_URL", "https://usetrmnl.com/css/latest/plugins.css").strip()
LOCALE = os.getenv("INKFRAME_LOCALE", "en").strip() or "en"
ERROR_TITLE = "Error on {name}"
ERROR_DETAIL = "Unable to render content. Please check server logs."

FONT_CANDIDATES = (
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
)

DEFAULT_SCREEN_TEXT = {
    "setup": ("Welcome", "Add this device to a playlist to get started."),
    "sleep": ("Sleeping", "The screen will wake up on its next refresh."),
    "error": ("Error", ERROR_DETAIL),
}

FRAME_TEMPLATE = """<!DOCTYPE html>
<html lang="{{ locale }}">
<head>
<meta charset="utf-8">
{% if css_url %}<link rel="stylesheet" href="{{ css_url }}">{% endif %}
<style>html,body{margin:0;padding:0;width:{{ width }}px;height:{{ height }}px;overflow:hidden;background:#fff;}</style>
</head>
<body class="environment trmnl">
<div class="screen screen--{{ color_depth }}{% if css_name %} screen--{{ css_name }}{% endif %}{% if no_bleed %} screen--no-bleed{% endif %}{% if dark_mode %} screen--dark-mode{% endif %}">
{{ body }}
</div>
</body>
</html>
"""

ERROR_FRAGMENT_TEMPLATE = """<div class="layout layout--col layout--center">
<span class="title">{{ title }}</span>
<span class="description">{{ detail }}</span>
</div>"""

_layouts = Environment(autoescape=True)
_frame_template = _layouts.from_string(FRAME_TEMPLATE)
_error_fragment_template = _layouts.from_string(ERROR_FRAGMENT_TEMPLATE)

logger = logging.getLogger(__name__)


class HtmlRenderer(Protocol):
    def render(
        self,
        markup: str,
        width: int,
        height: int,
        scale_factor: float = 1.0,
        timezone: str | None = None,
    ) -> bytes: ...


@dataclass
class RenderedFrame:
    image: Image.Image
    markup: str | None = None
    failed: bool = False

    @property
    def dither(self) -> bool:
        return wants_dither(self.markup)


def _load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    for path in FONT_CANDIDATES:
        if Path(path).exists():
            return ImageFont.truetype(path, size=size)
    return ImageFont.load_default()


def error_fragment(name: str) -> Markup:
    return Markup(_error_fragment_template.render(title=ERROR_TITLE.format(name=name), detail=ERROR_DETAIL))


def _utc_offset_seconds(now: datetime, tz: str | None) -> int:
    offset = local_now(now, tz).utcoffset()
    return int(offset.total_seconds()) if offset else 0


class RenderPipeline:
    """Turns plugins into bitmaps: template, frame markup, HTML screenshot."""

    def __init__(
        self,
        html_renderer: HtmlRenderer | None = None,
        template_renderer: TemplateRenderer | None = None,
    ) -> None:
        self.html_renderer = html_renderer or PlaywrightHtmlRenderer()
        self.templates = template_renderer or default_renderer

    def build_context(self, plugin: Plugin, size: str, now: datetime, tz: str | None = None) -> dict[str, Any]:
        payload = plugin.data_payload if plugin.data_payload is not None else {}
        configuration = plugin.configuration or {}
        utc_now = now if now.tzinfo else now.replace(tzinfo=timezone.utc)
        context: dict[str, Any] = dict(payload) if isinstance(payload, dict) else {}
        context.update(
            {
                "size": size,
                "data": payload,
                "config": configuration,
                "trmnl": {
                    "system": {"timestamp_utc": int(utc_now.timestamp())},
                    "user": {
                        "utc_offset": _utc_offset_seconds(now, tz),
                        "time_zone_iana": local_now(now, tz).tzinfo.key,
                        "locale": LOCALE,
                    },
                    "plugin_settings": {
                        "instance_name": plugin.name,
                        "strategy": plugin.data_strategy,
                        "dark_mode": "yes" if plugin.dark_mode else "no",
                        "no_screen_padding": "yes" if plugin.no_bleed else "no",
                        "custom_fields_values": configuration,
                    },
                },
            }
        )
        return context

    def render_markup(self, plugin: Plugin, size: str, now: datetime, tz: str | None = None) -> str:
        if not (plugin.render_markup or "").strip():
            raise TemplateRenderError(f"Plugin {plugin.name} has no markup")
        context = self.build_context(plugin, size, now, tz)
        return self.templates.render(plugin.render_markup, context, plugin.markup_language)

    def frame_markup(
        self,
        body: str,
        settings: ImageSettings,
        dark_mode: bool = False,
        no_bleed: bool = False,
    ) -> str:
        width, height = settings.viewport
        return _frame_template.render(
            locale=LOCALE,
            css_url=FRAMEWORK_CSS_URL,
            width=width,
            height=height,
            color_depth=settings.color_depth,
            css_name=settings.css_name,
            dark_mode=dark_mode,
            no_bleed=no_bleed,
            body=Markup(body),
        )

    def screenshot(self, markup: str, settings: ImageSettings, tz: str | None = None) -> Image.Image:
        width, height = settings.viewport
        try:
            data = self.html_renderer.render(markup, width, height, settings.scale_factor, tz)
        except HtmlRenderError:
            raise
        except Exception as exc:
            raise HtmlRenderError(f"HTML renderer failed: {exc!r}") from exc
        return load_image(data)

    def render_plugin(
        self,
        plugin: Plugin,
        settings: ImageSettings,
        now: datetime,
        tz: str | None = None,
    ) -> RenderedFrame:
        try:
            content = self.render_markup(plugin, "full", now, tz)
            body = Markup('<div class="view view--full">{}</div>').format(Markup(content))
            markup = self.frame_markup(body, settings, bool(plugin.dark_mode), bool(plugin.no_bleed))
            return RenderedFrame(self.screenshot(markup, settings, tz), markup)
        except (TemplateRenderError, HtmlRenderError, RasterizationError) as exc:
            logger.error("Render failed for plugin %s (%s): %s", plugin.id, plugin.name, exc)
            return RenderedFrame(self.render_default_screen("error", settings, plugin.name), failed=True)

    def render_mashup(
        self,
        layout: str,
        plugins: list[Plugin],
        settings: ImageSettings,
        now: datetime,
        tz: str | None = None,
        label: str = "Mashup",
    ) -> RenderedFrame:
        fragments: list[str] = []
        for plugin, size in zip(plugins, mashup.region_sizes(layout)):
            try:
                fragments.append(self.render_markup(plugin, size, now, tz))
            except TemplateRenderError as exc:
                logger.warning("Mashup region failed for plugin %s (%s): %s", plugin.id, plugin.name, exc)
                fragments.append(error_fragment(plugin.name))
        markup = self.frame_markup(mashup.compose(layout, fragments), settings)
        try:
            return RenderedFrame(self.screenshot(markup, settings, tz), markup)
        except (HtmlRenderError, RasterizationError) as exc:
            logger.error("Mashup render failed (%s): %s", label, exc)
            return RenderedFrame(self.render_default_screen("error", settings, label), failed=True)

    def render_default_screen(self, kind: str, settings: ImageSettings, label: str | None = None) -> Image.Image:
        """Draw a built-in screen directly with Pillow; needs no browser."""
        title, detail = DEFAULT_SCREEN_TEXT.get(kind, DEFAULT_SCREEN_TEXT["error"])
        if kind == "error" and label:
            title = ERROR_TITLE.format(name=label)
        elif kind == "setup" and label:
            detail = f"{detail} Device ID: {label}"
        width, height = settings.width, settings.height
        if settings.rotation % 180 == 90:
            width, height = height, width
        canvas = Image.new("L", (width, height), color=0xFF)
        draw = ImageDraw.Draw(canvas)
        title_font = _load_font(max(16, height // 8))
        detail_font = _load_font(max(12, height // 20))
        title_box = draw.textbbox((0, 0), title, font=title_font)
        detail_box = draw.textbbox((0, 0), detail, font=detail_font)
        title_h = title_box[3] - title_box[1]
        gap = max(8, height // 30)
        top = (height - title_h - gap - (detail_box[3] - detail_box[1])) // 2
        draw.text(((width - (title_box[2] - title_box[0])) // 2, top), title, font=title_font, fill=0)
        draw.text(
            ((width - (detail_box[2] - detail_box[0])) // 2, top + title_h + gap),
            detail,
            font=detail_font,
            fill=0,
        )
        return canvas
