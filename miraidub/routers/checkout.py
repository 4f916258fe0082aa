"""
checkout.py — Checkout Return Pages
=====================================

Polar sends the browser back to plain https URLs.  These two pages hand
the user back to the mobile app through its deep-link scheme.

Handles:
  GET /checkout/success
  GET /checkout/cancel
"""

from html import escape

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse

from miraidub.config import Settings, get_settings

router = APIRouter()

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title} - Mirai Dub AI</title>
  <style>
    body {{
      font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
      background: {background};
      min-height: 100vh; margin: 0; padding: 20px;
      display: flex; align-items: center; justify-content: center;
    }}
    .container {{
      background: white; border-radius: 16px; padding: 40px;
      text-align: center; max-width: 400px;
      box-shadow: 0 20px 40px rgba(0,0,0,0.2);
    }}
    h1 {{ color: #111827; font-size: 24px; margin-bottom: 12px; }}
    p {{ color: #6b7280; font-size: 16px; line-height: 1.5; }}
    .btn {{
      display: inline-block; background: #3b82f6; color: white;
      padding: 14px 28px; border-radius: 8px; text-decoration: none;
      font-weight: 600; margin-top: 12px;
    }}
    .note {{ color: #9ca3af; font-size: 14px; margin-top: 20px; }}
  </style>
</head>
<body>
  <div class="container">
    <h1>{title}</h1>
    <p>{message}</p>
    <a href="{deep_link}" class="btn">Return to App</a>
    <p class="note">If the button doesn't work, please open the Mirai Dub AI app manually.</p>
  </div>
  <script>
    setTimeout(function() {{ window.location.href = '{deep_link}'; }}, 1500);
  </script>
</body>
</html>"""


def _render(title: str, message: str, deep_link: str, background: str) -> HTMLResponse:
    return HTMLResponse(_PAGE.format(
        title=escape(title),
        message=escape(message),
        deep_link=escape(deep_link),
        background=background,
    ))


@router.get("/checkout/success", response_class=HTMLResponse)
async def checkout_success(settings: Settings = Depends(get_settings)):
    return _render(
        "Payment Successful!",
        "Your credits have been added to your account. "
        "You can now close this window and return to the app.",
        f"{settings.app_scheme}://credits/success",
        "linear-gradient(135deg, #3b82f6 0%, #2563eb 100%)",
    )


@router.get("/checkout/cancel", response_class=HTMLResponse)
async def checkout_cancel(settings: Settings = Depends(get_settings)):
    return _render(
        "Payment Cancelled",
        "Your payment was cancelled and you have not been charged.",
        f"{settings.app_scheme}://credits/cancel",
        "linear-gradient(135deg, #6b7280 0%, #4b5563 100%)",
    )
