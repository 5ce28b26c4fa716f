"""JavaScript expressions injected into the browser page via CDP.

Every element lookup goes through ``find_element_js`` so CSS and XPath
selectors work the same everywhere. Expressions that can fail return a JSON
string with an ``error`` key; the caller turns that into a ProtocolError.
"""

import json


def is_xpath(selector: str) -> bool:
    """A leading ``/`` (or ``(/`` for grouped expressions) means XPath."""
    s = selector.lstrip()
    return s.startswith("/") or s.startswith("(/")


def find_element_js(selector: str) -> str:
    """JS expression evaluating to the first element matching ``selector``."""
    sel_json = json.dumps(selector)
    if is_xpath(selector):
        return (
            f"document.evaluate({sel_json}, document, null, "
            f"XPathResult.FIRST_ORDERED_NODE_TYPE, null).singleNodeValue"
        )
    return f"document.querySelector({sel_json})"


def _with_element(selector: str, body: str) -> str:
    """Wrap ``body`` so it runs with ``el`` bound, or reports a missing element."""
    sel_json = json.dumps(selector)
    return f"""
    (() => {{
      let el;
      try {{
        el = {find_element_js(selector)};
      }} catch (e) {{
        return JSON.stringify({{ error: 'Invalid selector ' + {sel_json} + ': ' + e.message }});
      }}
      if (!el) return JSON.stringify({{ error: 'Element not found: ' + {sel_json} }});
      {body}
    }})()
    """


# ── Wait conditions ──


def element_present_js(selector: str) -> str:
    """Boolean expression: does ``selector`` match anything right now?"""
    return f"(() => {{ try {{ return !!({find_element_js(selector)}); }} catch (e) {{ return false; }} }})()"


def text_present_js(text: str) -> str:
    """Boolean expression: is ``text`` part of the page's visible text?"""
    return (
        f"(() => !!document.body && "
        f"(document.body.innerText || '').includes({json.dumps(text)}))()"
    )


# ── Interaction ──


def click_js(selector: str) -> str:
    """Scroll an element into view and click it."""
    return _with_element(selector, """
      el.scrollIntoView({ block: 'center' });
      el.click();
      const label = el.getAttribute('role') || el.tagName.toLowerCase();
      const desc = (el.getAttribute('aria-label') || el.textContent || el.value || '').trim().slice(0, 80);
      return JSON.stringify({ label, desc });
    """)


def focus_input_js(selector: str) -> str:
    """Focus a text input and clear it. Fails for non-typeable elements."""
    return _with_element(selector, """
      const tag = el.tagName.toLowerCase();
      const ce = el.isContentEditable;
      const typeable = tag === 'input' || tag === 'textarea' || ce || el.getAttribute('role') === 'textbox';
      if (!typeable) return JSON.stringify({ error: 'Element is a <' + tag + '>, not a text input' });
      el.scrollIntoView({ block: 'center' });
      el.focus();
      if (ce) {
        const range = document.createRange();
        range.selectNodeContents(el);
        const sel = window.getSelection();
        sel.removeAllRanges();
        sel.addRange(range);
      } else {
        el.value = '';
      }
      return JSON.stringify({ tag, ce });
    """)


def set_input_value_js(selector: str, text: str) -> str:
    """Set input value with proper React/Vue event dispatching."""
    text_json = json.dumps(text)
    return _with_element(selector, f"""
      if (!el.isContentEditable) {{
        const proto = el.tagName === 'TEXTAREA' ? HTMLTextAreaElement.prototype : HTMLInputElement.prototype;
        const setter = Object.getOwnPropertyDescriptor(proto, 'value')?.set;
        if (setter) setter.call(el, {text_json});
        else el.value = {text_json};
        el.dispatchEvent(new Event('input', {{ bubbles: true }}));
        el.dispatchEvent(new Event('change', {{ bubbles: true }}));
      }}
      return JSON.stringify({{ length: (el.value ?? el.innerText ?? '').length }});
    """)


def select_js(selector: str, values: list[str]) -> str:
    """Pick <option>s by value, falling back to their visible text."""
    values_json = json.dumps(values)
    return _with_element(selector, f"""
      if (el.tagName !== 'SELECT') return JSON.stringify({{ error: 'Element is a <' + el.tagName.toLowerCase() + '>, not a <select>' }});
      const wanted = {values_json};
      const opts = [...el.options];
      const picked = [];
      const missing = [];
      for (const v of wanted) {{
        const o = opts.find(o => o.value === v) || opts.find(o => o.textContent.trim() === v);
        if (o) picked.push(o); else missing.push(v);
      }}
      if (missing.length) return JSON.stringify({{ error: 'No option matching: ' + missing.join(', ') }});
      if (!el.multiple && picked.length > 1) return JSON.stringify({{ error: 'Select is not multiple; got ' + picked.length + ' values' }});
      opts.forEach(o => {{ o.selected = picked.includes(o); }});
      el.dispatchEvent(new Event('input', {{ bubbles: true }}));
      el.dispatchEvent(new Event('change', {{ bubbles: true }}));
      return JSON.stringify({{ selected: picked.map(o => o.value) }});
    """)


def attr_js(selector: str, name: str) -> str:
    """Read one attribute. ``value`` is null when the attribute is absent."""
    return _with_element(selector, f"""
      return JSON.stringify({{ value: el.getAttribute({json.dumps(name)}) }});
    """)


def element_rect_js(selector: str) -> str:
    """Bounding box of an element in document coordinates."""
    return _with_element(selector, """
      el.scrollIntoView({ block: 'center' });
      const r = el.getBoundingClientRect();
      if (r.width === 0 || r.height === 0) return JSON.stringify({ error: 'Element has no visible area' });
      return JSON.stringify({ x: r.left + window.scrollX, y: r.top + window.scrollY, width: r.width, height: r.height });
    """)


# ── Extraction ──


def _root_js(selector: str | None, body: str, default_root: str) -> str:
    if selector:
        return _with_element(selector, f"const root = el;\n{body}")
    return f"""
    (() => {{
      const root = {default_root};
      if (!root) return JSON.stringify({{ value: '' }});
      {body}
    }})()
    """


def extract_text_js(selector: str | None = None) -> str:
    """Rendered text of an element, or of the whole body."""
    return _root_js(
        selector,
        "return JSON.stringify({ value: root.innerText ?? root.textContent ?? '' });",
        "document.body",
    )


def extract_html_js(selector: str | None = None) -> str:
    """Serialized markup of an element, or of the whole document."""
    return _root_js(
        selector,
        "return JSON.stringify({ value: root.outerHTML });",
        "document.documentElement",
    )


# Headings, paragraphs, links, list items and code blocks, in document order.
_MARKDOWN_BODY = r"""
      const SKIP = new Set(['SCRIPT', 'STYLE', 'NOSCRIPT', 'TEMPLATE', 'SVG', 'HEAD', 'IFRAME']);
      const INLINE = new Set(['A', 'ABBR', 'B', 'BDI', 'BDO', 'BR', 'CITE', 'CODE', 'DATA', 'DFN', 'EM',
        'I', 'KBD', 'LABEL', 'MARK', 'Q', 'S', 'SAMP', 'SMALL', 'SPAN', 'STRONG', 'SUB', 'SUP',
        'TIME', 'U', 'VAR', 'IMG']);
      const clean = s => s.replace(/\s+/g, ' ').trim();
      const out = [];
      let buf = '';
      const flush = () => { const t = clean(buf); if (t) out.push(t); buf = ''; };

      function inlineNode(node) {
        if (node.nodeType === 3) return node.textContent;
        if (node.nodeType !== 1 || SKIP.has(node.tagName)) return '';
        const tag = node.tagName;
        if (tag === 'BR') return ' ';
        if (tag === 'CODE') return '`' + node.textContent + '`';
        if (tag === 'A' && node.getAttribute('href')) {
          const label = clean(inline(node));
          return label ? '[' + label + '](' + node.href + ')' : '';
        }
        return inline(node);
      }

      function inline(node) {
        let s = '';
        for (const child of node.childNodes) s += inlineNode(child);
        return s;
      }

      function list(node, depth) {
        const lines = [];
        let n = 1;
        for (const li of node.children) {
          if (li.tagName !== 'LI') continue;
          let text = '';
          const nested = [];
          for (const c of li.childNodes) {
            if (c.nodeType === 1 && (c.tagName === 'UL' || c.tagName === 'OL')) nested.push(c);
            else text += inlineNode(c);
          }
          const marker = node.tagName === 'OL' ? (n++) + '.' : '-';
          lines.push('  '.repeat(depth) + marker + ' ' + clean(text));
          for (const sub of nested) lines.push(list(sub, depth + 1));
        }
        return lines.join('\n');
      }

      function block(node) {
        for (const child of node.childNodes) {
          if (child.nodeType === 3) { buf += child.textContent; continue; }
          if (child.nodeType !== 1 || SKIP.has(child.tagName)) continue;
          const tag = child.tagName;
          if (INLINE.has(tag)) { buf += inlineNode(child); continue; }
          flush();
          const h = /^H([1-6])$/.exec(tag);
          if (h) {
            const t = clean(inline(child));
            if (t) out.push('#'.repeat(Number(h[1])) + ' ' + t);
          } else if (tag === 'P') {
            const t = clean(inline(child));
            if (t) out.push(t);
          } else if (tag === 'PRE') {
            out.push('```\n' + child.textContent.replace(/\n+$/, '') + '\n```');
          } else if (tag === 'UL' || tag === 'OL') {
            const l = list(child, 0);
            if (l) out.push(l);
          } else {
            block(child);
            flush();
          }
        }
      }

      if (root.nodeType === 1 && !INLINE.has(root.tagName)) {
        const wrapper = document.createElement('div');
        wrapper.appendChild(root.cloneNode(true));
        block(wrapper);
      } else {
        buf += inlineNode(root);
      }
      flush();
      return JSON.stringify({ value: out.join('\n\n') });
"""


def extract_markdown_js(selector: str | None = None) -> str:
    """Markdown rendition of an element, or of the whole body."""
    return _root_js(selector, _MARKDOWN_BODY, "document.body")
