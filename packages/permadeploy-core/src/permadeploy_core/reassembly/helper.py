"""Client-side reassembly helper (service worker) source generation.

The generated script embeds every chunk manifest keyed by the URL the page
uses for the chunked file, answers plain and Range requests for those URLs
by streaming the needed chunk slices, and caches chunks cache-first. The
output is a pure function of its inputs so a previously published helper
can be validated by regenerating it and comparing hashes.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping

from permadeploy_core.reassembly.manifest import ChunkManifest

HELPER_CACHE_NAME = "permadeploy-chunks-v1"

_TEMPLATE = """\
/* chunk reassembly service worker (generated) */
const BASE_URL = __BASE_URL__;
const CACHE_NAME = __CACHE_NAME__;
const MANIFESTS = __MANIFESTS__;

self.addEventListener('install', (event) => { event.waitUntil(self.skipWaiting()); });
self.addEventListener('activate', (event) => { event.waitUntil(self.clients.claim()); });

function parseRange(header, total) {
  const m = /^\\s*bytes\\s*=\\s*(\\d*)\\s*-\\s*(\\d*)\\s*$/.exec(header || '');
  if (!m || total <= 0 || (!m[1] && !m[2])) return null;
  if (!m[1]) {
    const suffix = parseInt(m[2], 10);
    return suffix ? { start: Math.max(total - suffix, 0), end: total - 1 } : null;
  }
  const start = parseInt(m[1], 10);
  const end = Math.min(m[2] ? parseInt(m[2], 10) : total - 1, total - 1);
  return start > end ? null : { start, end };
}

function chunksForRange(manifest, start, end) {
  const needed = [];
  let offset = 0;
  for (const chunk of manifest.chunks) {
    const chunkStart = offset;
    const chunkEnd = offset + chunk.size - 1;
    if (chunkEnd >= start && chunkStart <= end) {
      needed.push({
        chunk,
        sliceStart: Math.max(start - chunkStart, 0),
        sliceEnd: Math.min(end - chunkStart, chunk.size - 1),
      });
    }
    offset += chunk.size;
    if (offset > end) break;
  }
  return needed;
}

async function fetchChunk(urlPath) {
  const url = BASE_URL + urlPath;
  const cache = await caches.open(CACHE_NAME);
  const cached = await cache.match(url);
  if (cached) return cached.arrayBuffer();
  const response = await fetch(url);
  if (!response.ok) throw new Error('chunk fetch failed: ' + url + ' (' + response.status + ')');
  cache.put(url, response.clone());
  return response.arrayBuffer();
}

function rangeStream(pieces) {
  let i = 0;
  return new ReadableStream({
    async pull(controller) {
      if (i >= pieces.length) { controller.close(); return; }
      const piece = pieces[i++];
      try {
        const buffer = await fetchChunk(piece.chunk.urlPath);
        controller.enqueue(new Uint8Array(buffer.slice(piece.sliceStart, piece.sliceEnd + 1)));
      } catch (err) {
        controller.error(err);
      }
    },
  });
}

self.addEventListener('fetch', (event) => {
  const path = new URL(event.request.url).pathname;
  const manifest = MANIFESTS[path];
  if (!manifest) return;
  const total = manifest.totalSize;
  const rangeHeader = event.request.headers.get('range');
  if (rangeHeader) {
    const range = parseRange(rangeHeader, total);
    if (!range) {
      event.respondWith(new Response(null, { status: 416, headers: { 'Content-Range': 'bytes */' + total } }));
      return;
    }
    event.respondWith(new Response(rangeStream(chunksForRange(manifest, range.start, range.end)), {
      status: 206,
      headers: {
        'Content-Type': manifest.mimeType,
        'Content-Length': String(range.end - range.start + 1),
        'Content-Range': 'bytes ' + range.start + '-' + range.end + '/' + total,
        'Accept-Ranges': 'bytes',
      },
    }));
    return;
  }
  const all = total > 0 ? chunksForRange(manifest, 0, total - 1) : [];
  event.respondWith(new Response(rangeStream(all), {
    status: 200,
    headers: {
      'Content-Type': manifest.mimeType,
      'Content-Length': String(total),
      'Accept-Ranges': 'bytes',
    },
  }));
});
"""


def generate_helper_script(
    manifests: Mapping[str, ChunkManifest], content_url: str = ""
) -> str:
    """Render the helper for *manifests*, keyed by the chunked file's URL path."""
    embedded = {url: manifests[url].to_wire() for url in sorted(manifests)}
    return (
        _TEMPLATE.replace("__BASE_URL__", json.dumps(content_url.rstrip("/")))
        .replace("__CACHE_NAME__", json.dumps(HELPER_CACHE_NAME))
        .replace("__MANIFESTS__", json.dumps(embedded, separators=(",", ":"), sort_keys=True))
    )


def helper_bytes(manifests: Mapping[str, ChunkManifest], content_url: str = "") -> bytes:
    return generate_helper_script(manifests, content_url).encode("utf-8")


def helper_hash(manifests: Mapping[str, ChunkManifest], content_url: str = "") -> str:
    return hashlib.sha256(helper_bytes(manifests, content_url)).hexdigest()
