"""Per-format reference extraction via a registry.

Each extractor is stateless and returns the raw reference strings found in
a file's text, in document order. Filtering and path resolution happen
afterwards in ``resolver``, so adding a format means defining one class and
appending an instance to EXTRACTORS.
"""

from __future__ import annotations

import json
import re
from typing import Protocol, runtime_checkable

ASSET_EXTENSIONS = (
    "js|mjs|css|json|png|jpg|jpeg|gif|svg|webp|avif|ico|woff|woff2|ttf|eot|otf|"
    "wasm|webm|mp4|m4v|mov|avi|mkv|ogg|ogv|mp3|m4a|aac|flac|wav|txt|xml|pdf"
)
_MEDIA_EXTENSIONS = (
    "png|jpg|jpeg|gif|svg|webp|avif|ico|mp4|m4v|mov|webm|avi|mkv|ogg|ogv|mp3|m4a|aac|flac|wav"
)
_JSON_EXTENSIONS = re.compile(
    r"\.(png|jpg|jpeg|gif|svg|webp|avif|ico|json|woff|woff2|ttf|eot|otf)$", re.IGNORECASE
)

_CSS_URL = re.compile(r"""url\(\s*["']?([^"')]+?)["']?\s*\)""", re.IGNORECASE)
_CSS_IMPORT = re.compile(r"""@import\s+(?:url\()?\s*["']?([^"';)\s]+)["']?\s*\)?""", re.IGNORECASE)
_CSS_IMAGE_SET = re.compile(r"""image-set\s*\(([^)]*(?:\([^)]*\)[^)]*)*)\)""", re.IGNORECASE)
_CSS_QUOTED = re.compile(r"""["']([^"']+)["']""")


@runtime_checkable
class ReferenceExtractor(Protocol):
    """Protocol for per-format reference extractors."""

    category: str

    def extract(self, text: str) -> list[str]:
        """Return raw reference strings embedded in *text*."""
        ...


def _findall(patterns: list[re.Pattern[str]], text: str) -> list[str]:
    refs: list[str] = []
    for pattern in patterns:
        refs.extend(m.group(1).strip() for m in pattern.finditer(text))
    return refs


class CssExtractor:
    """url(), @import and image-set() references."""

    category = "css"

    def extract(self, text: str) -> list[str]:
        refs = _findall([_CSS_URL, _CSS_IMPORT], text)
        # image-set("a.png" 1x, "b.png" 2x) may list bare strings without url()
        for m in _CSS_IMAGE_SET.finditer(text):
            refs.extend(q.group(1) for q in _CSS_QUOTED.finditer(m.group(1)))
        return refs


class HtmlExtractor:
    """Tag attributes, srcset candidates, icons, social images, data-* assets."""

    category = "html"

    _ATTRIBUTES = [
        re.compile(r"""<script[^>]+src\s*=\s*["']([^"']+)["']""", re.IGNORECASE),
        re.compile(r"""<link[^>]+href\s*=\s*["']([^"']+)["']""", re.IGNORECASE),
        re.compile(r"""<(?:img|source|video|audio|iframe|embed|track|input)[^>]+src\s*=\s*["']([^"']+)["']""", re.IGNORECASE),
        re.compile(r"""<video[^>]+poster\s*=\s*["']([^"']+)["']""", re.IGNORECASE),
        re.compile(r"""<object[^>]+data\s*=\s*["']([^"']+)["']""", re.IGNORECASE),
        re.compile(
            r"""<meta[^>]*(?:property|name)\s*=\s*["'](?:og:image|twitter:image)["'][^>]*content\s*=\s*["']([^"']+)["']""",
            re.IGNORECASE,
        ),
        re.compile(
            r"""<meta[^>]*content\s*=\s*["']([^"']+)["'][^>]*(?:property|name)\s*=\s*["'](?:og:image|twitter:image)["']""",
            re.IGNORECASE,
        ),
        re.compile(
            rf"""data-[a-z-]+\s*=\s*["']([^"']*\.(?:{_MEDIA_EXTENSIONS}))["']""", re.IGNORECASE
        ),
    ]
    _SRCSET = re.compile(r"""<(?:img|source)[^>]+srcset\s*=\s*["']([^"']+)["']""", re.IGNORECASE)
    _STYLE_BLOCK = re.compile(r"<style[^>]*>(.*?)</style>", re.IGNORECASE | re.DOTALL)
    _STYLE_ATTR = re.compile(r"""style\s*=\s*"([^"]*)"|style\s*=\s*'([^']*)'""", re.IGNORECASE)

    def extract(self, text: str) -> list[str]:
        refs = _findall(self._ATTRIBUTES, text)

        for m in self._SRCSET.finditer(text):
            for candidate in m.group(1).split(","):
                parts = candidate.strip().split()
                if parts:
                    refs.append(parts[0])

        css = CssExtractor()
        for m in self._STYLE_BLOCK.finditer(text):
            refs.extend(css.extract(m.group(1)))
        for m in self._STYLE_ATTR.finditer(text):
            refs.extend(css.extract(m.group(1) or m.group(2) or ""))
        return refs


class JsExtractor:
    """Module imports, worker/service-worker registration, fetches, asset literals."""

    category = "js"

    _PATTERNS = [
        re.compile(r"""\bimport\s*[^'"`;()]*?\s*\bfrom\s*["']([^"']+)["']"""),
        re.compile(r"""import\s+["']([^"']+)["']"""),
        re.compile(r"""import\(\s*["']([^"']+)["']\s*\)"""),
        re.compile(r"""require\(\s*["']([^"']+)["']\s*\)"""),
        re.compile(r"""new\s+URL\s*\(\s*["']([^"']+)["']""", re.IGNORECASE),
        re.compile(r"""new\s+(?:Worker|SharedWorker)\s*\(\s*["']([^"']+)["']""", re.IGNORECASE),
        re.compile(r"""\.register\s*\(\s*["']([^"']+)["']""", re.IGNORECASE),
        re.compile(rf"""fetch\s*\(\s*["']([^"']+\.(?:{ASSET_EXTENSIONS}))["']""", re.IGNORECASE),
        re.compile(rf"""`(\.{{0,2}}/[^`$]*\.(?:{ASSET_EXTENSIONS}))`""", re.IGNORECASE),
        re.compile(rf"""["']((?:\.{{0,2}}/|\w[\w.-]*/)[^"'\s]*\.(?:{ASSET_EXTENSIONS}))["']""", re.IGNORECASE),
    ]

    def extract(self, text: str) -> list[str]:
        return _findall(self._PATTERNS, text)


class JsonExtractor:
    """Path-like strings anywhere in a JSON document (e.g. web app manifests)."""

    category = "json"

    def extract(self, text: str) -> list[str]:
        try:
            data = json.loads(text)
        except ValueError:
            return []
        refs: list[str] = []
        self._walk(data, refs)
        return refs

    def _walk(self, obj: object, refs: list[str]) -> None:
        if isinstance(obj, str):
            if obj.startswith(("./", "../", "/")) and _JSON_EXTENSIONS.search(obj):
                refs.append(obj)
        elif isinstance(obj, list):
            for item in obj:
                self._walk(item, refs)
        elif isinstance(obj, dict):
            for value in obj.values():
                self._walk(value, refs)


class SvgExtractor:
    """href / xlink:href (local fragments excluded) and url() references."""

    category = "svg"

    _HREF = re.compile(r"""(?:xlink:)?href\s*=\s*["']([^"'#][^"']*)["']""", re.IGNORECASE)

    def extract(self, text: str) -> list[str]:
        return _findall([self._HREF, _CSS_URL], text)


EXTRACTORS: list[ReferenceExtractor] = [
    HtmlExtractor(),
    CssExtractor(),
    JsExtractor(),
    JsonExtractor(),
    SvgExtractor(),
]


def extractor_for(category: str) -> ReferenceExtractor | None:
    for extractor in EXTRACTORS:
        if extractor.category == category:
            return extractor
    return None
