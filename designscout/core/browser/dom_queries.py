"""
Named page queries run through playwright_evaluate

Each query is a self-contained script that returns a JSON string. The
leading ``/* query: <name> */`` marker names the query in logs and lets
test doubles answer by name.
"""

import json
import re
from typing import Iterable, Optional, Sequence

QUERY_MARKER = re.compile(r"/\* query: ([a-z_]+) \*/")

# Autocomplete rows, most specific first
SUGGESTION_ROW_SELECTOR = 'div[role="option"].flex.h-56.cursor-pointer'
SUGGESTION_FALLBACK_SELECTORS = (
    '[role="option"]',
    "li[role=\"option\"]",
    ".suggestion-item",
    ".dropdown-item",
    ".search-suggestion",
    '[data-testid*="suggestion"]',
    ".autocomplete-item",
    ".search-result-item",
)
MAX_SUGGESTIONS = 10
MIN_SUGGESTION_TEXT = 3
MAX_SUGGESTION_TEXT = 200


def query_name(script: str) -> Optional[str]:
    """Return the query name embedded in a script, if any"""
    match = QUERY_MARKER.search(script or "")
    return match.group(1) if match else None


def _wrap(name: str, body: str) -> str:
    return f"/* query: {name} */\n(() => {{\n{body}\n}})()"


# Shared helper: resolves "css", "text=Foo" and 'tag:has-text("Foo")' forms,
# plus comma separated alternatives of those.
_FIND_ELEMENTS = r"""
  const splitTopLevel = (sel) => {
    const parts = []; let depth = 0; let quote = null; let cur = '';
    for (const ch of sel) {
      if (quote) { if (ch === quote) quote = null; cur += ch; continue; }
      if (ch === '"' || ch === "'") { quote = ch; cur += ch; continue; }
      if (ch === '(' || ch === '[') depth++;
      if (ch === ')' || ch === ']') depth--;
      if (ch === ',' && depth === 0) { parts.push(cur.trim()); cur = ''; continue; }
      cur += ch;
    }
    if (cur.trim()) parts.push(cur.trim());
    return parts;
  };
  const isVisible = (el) => {
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    return rect.width > 0 && rect.height > 0 && style.visibility !== 'hidden' && style.display !== 'none';
  };
  const findOne = (sel) => {
    const textMatch = sel.match(/^text=(.+)$/);
    if (textMatch) {
      const wanted = textMatch[1].replace(/^["']|["']$/g, '').replace(/\.\.\.$/, '').toLowerCase();
      return Array.from(document.querySelectorAll('body *')).filter(
        (el) => el.children.length === 0 && (el.textContent || '').trim().toLowerCase().startsWith(wanted)
      );
    }
    const hasText = sel.match(/^(.*):has-text\(["'](.+)["']\)$/);
    if (hasText) {
      const base = hasText[1] || '*';
      const wanted = hasText[2].toLowerCase();
      return Array.from(document.querySelectorAll(base)).filter(
        (el) => (el.textContent || '').toLowerCase().includes(wanted)
      );
    }
    try { return Array.from(document.querySelectorAll(sel)); } catch (e) { return []; }
  };
  const findElements = (sel) => {
    const found = [];
    for (const part of splitTopLevel(sel)) {
      for (const el of findOne(part)) if (!found.includes(el)) found.push(el);
    }
    return found;
  };
"""


def selector_probe(selector: str) -> str:
    """Report whether a selector matches anything, and whether it is visible"""
    body = _FIND_ELEMENTS + f"""
  const matches = findElements({json.dumps(selector)});
  return JSON.stringify({{
    found: matches.length > 0,
    visible: matches.some(isVisible),
    count: matches.length
  }});"""
    return _wrap("selector_probe", body)


def discover_suggestions(
    row_selector: str = SUGGESTION_ROW_SELECTOR,
    fallback_selectors: Sequence[str] = SUGGESTION_FALLBACK_SELECTORS,
    limit: int = MAX_SUGGESTIONS,
) -> str:
    """Collect visible autocomplete rows as records {text, label, index, selector, source}"""
    body = _FIND_ELEMENTS + f"""
  const candidates = [{json.dumps(row_selector)}].concat({json.dumps(list(fallback_selectors))});
  for (const sel of candidates) {{
    let elements = [];
    try {{ elements = Array.from(document.querySelectorAll(sel)); }} catch (e) {{ continue; }}
    const rows = [];
    elements.forEach((el, i) => {{
      const text = (el.textContent || '').replace(/\\s+/g, ' ').trim();
      if (!isVisible(el) || text.length < {MIN_SUGGESTION_TEXT} || text.length >= {MAX_SUGGESTION_TEXT}) return;
      const labelEl = el.querySelector('span, small, [class*="label"], [class*="category"]');
      const label = [
        el.getAttribute('aria-label') || '',
        el.getAttribute('data-type') || '',
        labelEl && labelEl !== el ? (labelEl.textContent || '').trim() : ''
      ].join(' ').trim();
      rows.push({{ text, label, index: rows.length, selector: sel + ' >> nth=' + i, source: sel }});
    }});
    if (rows.length) return JSON.stringify(rows.slice(0, {int(limit)}));
  }}
  return JSON.stringify([]);"""
    return _wrap("discover_suggestions", body)


def result_candidates(cell_selector: str, limit: int = 50) -> str:
    """List result links under the given cell selector as {href, text, index, selector}"""
    body = f"""
  const links = Array.from(document.querySelectorAll({json.dumps(cell_selector)}));
  const out = links.slice(0, {int(limit)}).map((a, i) => {{
    const anchor = a.tagName === 'A' ? a : a.querySelector('a');
    const img = a.querySelector('img');
    return {{
      href: anchor ? anchor.href : '',
      text: ((img && img.alt) || a.getAttribute('aria-label') || a.textContent || '').trim().slice(0, 200),
      index: i,
      selector: {json.dumps(cell_selector)} + ' >> nth=' + i
    }};
  }});
  return JSON.stringify(out);"""
    return _wrap("result_candidates", body)


def page_info(title_selectors: Iterable[str] = ("h1", '[role="dialog"] h1', ".modal-title")) -> str:
    """Title, description and URL of the page or open modal"""
    body = f"""
  let heading = '';
  for (const sel of {json.dumps(list(title_selectors))}) {{
    const el = document.querySelector(sel);
    if (el && el.textContent.trim()) {{ heading = el.textContent.trim(); break; }}
  }}
  const meta = document.querySelector('meta[name="description"], meta[property="og:description"]');
  return JSON.stringify({{
    url: window.location.href,
    title: document.title || '',
    heading,
    description: meta ? (meta.getAttribute('content') || '') : ''
  }});"""
    return _wrap("page_info", body)


def current_url() -> str:
    return _wrap("current_url", "  return JSON.stringify({ url: window.location.href });")


def history_back() -> str:
    return _wrap("history_back", "  window.history.back();\n  return JSON.stringify({ ok: true });")


def focus_element(selector: str) -> str:
    body = f"""
  const el = document.querySelector({json.dumps(selector)});
  if (el) el.focus();
  return JSON.stringify({{ focused: !!el }});"""
    return _wrap("focus_element", body)
