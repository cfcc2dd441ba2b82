from html import escape
from string import Template

from fastapi.responses import HTMLResponse

from shortlink.schemas import MappingOut

WECHAT_HTML = Template("""
<!doctype html>
<html>
<head>
  <meta charset="utf-8"/>
  <meta name="viewport" content="width=device-width, initial-scale=1"/>
  <title>$title</title>
  <style>
    body {
      font-family: system-ui, -apple-system, BlinkMacSystemFont, sans-serif;
      margin: 40px auto;
      max-width: 420px;
      background: #fafafa;
      text-align: center;
    }
    .card {
      background: #fff;
      padding: 24px;
      border-radius: 10px;
      box-shadow: 0 6px 20px rgba(0,0,0,0.06);
    }
    img { max-width: 100%; border-radius: 8px; }
    .muted { color: #666; font-size: 13px; }
    code {
      display: block;
      background: #f3f4f6;
      padding: 8px;
      border-radius: 6px;
      word-break: break-all;
      margin-top: 12px;
    }
    a { color: #2563eb; font-weight: 600; text-decoration: none; }
  </style>
</head>
<body>
<div class="card">
  <h2>$title</h2>
  $image
  <p class="muted">Scan with WeChat, or long-press the image to recognise the QR code.</p>
  <code>$qr_code_data</code>
  <p><a href="$target">$target</a></p>
</div>
</body>
</html>
""")


def image_src(mapping: MappingOut) -> str | None:
    if mapping.image_base64:
        if mapping.image_base64.startswith("data:"):
            return mapping.image_base64
        return f"data:image/png;base64,{mapping.image_base64}"
    return mapping.image_url


def wechat_page(mapping: MappingOut) -> HTMLResponse:
    src = image_src(mapping)
    image = ""
    if src:
        alt = mapping.image_alt or mapping.name or mapping.path
        image = f'<img src="{escape(src)}" alt="{escape(alt)}"/>'

    html = WECHAT_HTML.substitute(
        title=escape(mapping.name or mapping.path),
        image=image,
        qr_code_data=escape(mapping.qr_code_data or ""),
        target=escape(mapping.target),
    )
    return HTMLResponse(html)
