import secrets
from typing import Dict, Optional, Tuple

import resend
from markupsafe import escape

VERIFICATION_CODE_LENGTH = 6

brand_colors = {
    "bg_primary": "#0b0f19",
    "panel": "#111827",
    "border": "rgba(249, 115, 22, 0.35)",
    "text_primary": "#f9fafb",
    "text_muted": "rgba(229, 231, 235, 0.65)",
    "accent": "#f97316",
}


def generate_verification_code(length: int = VERIFICATION_CODE_LENGTH) -> str:
    upper_bound = 10**length
    return f"{secrets.randbelow(upper_bound):0{length}d}"


def send_email_via_resend(payload: Dict[str, object], api_key: str) -> Tuple[bool, Optional[str]]:
    configured_api_key = (api_key or "").strip()
    if not configured_api_key:
        return False, "Resend API key is not configured."

    previous_api_key = getattr(resend, "api_key", None)
    resend.api_key = configured_api_key
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        return False, str(exc)
    finally:
        resend.api_key = previous_api_key

    if not isinstance(response, dict) or not response.get("id"):
        return False, str(response)

    return True, None


def _wrap_email_body(heading: str, inner_html: str) -> str:
    colors = brand_colors
    return f"""<!DOCTYPE html>
<html lang="en">
  <body style="margin:0;padding:0;background:{colors['bg_primary']};font-family:'Segoe UI',Arial,sans-serif;">
    <div style="padding:40px 16px;">
      <table role="presentation" width="100%" style="max-width:560px;margin:0 auto;background:{colors['panel']};border:1px solid {colors['border']};border-radius:20px;">
        <tr>
          <td style="padding:36px 32px;color:{colors['text_primary']};">
            <h1 style="margin:0 0 16px 0;font-size:24px;color:{colors['accent']};">{heading}</h1>
            {inner_html}
            <p style="margin:32px 0 0 0;font-size:13px;color:{colors['text_muted']};">
              Regards,<br />The BahonXBD Team
            </p>
          </td>
        </tr>
      </table>
    </div>
  </body>
</html>"""


def build_verification_email_html(code: str, expiration_hours: int) -> str:
    colors = brand_colors
    inner = f"""<p style="margin:0 0 24px 0;font-size:15px;line-height:1.7;">
              Use the code below to verify your email address. It expires in {expiration_hours} hours.
            </p>
            <p style="margin:0;font-size:34px;letter-spacing:10px;font-weight:700;color:{colors['accent']};">{code}</p>
            <p style="margin:24px 0 0 0;font-size:13px;color:{colors['text_muted']};">
              If you did not create an account you can ignore this email.
            </p>"""
    return _wrap_email_body("Verify your email", inner)


def send_verification_email(
    recipient_email: str,
    code: str,
    *,
    api_key: str,
    sender: str,
    expiration_hours: int,
):
    text_body = (
        f"Your BahonXBD verification code is {code}. "
        f"It expires in {expiration_hours} hours."
    )
    payload: Dict[str, object] = {
        "from": sender,
        "to": [recipient_email],
        "subject": "Verify your BahonXBD account",
        "html": build_verification_email_html(code, expiration_hours),
        "text": text_body,
    }
    return send_email_via_resend(payload, api_key)


def send_welcome_email(recipient_email: str, name: Optional[str], *, api_key: str, sender: str):
    display_name = (name or "").strip() or "there"
    inner = f"""<p style="margin:0 0 16px 0;font-size:15px;line-height:1.7;">
              Hi {escape(display_name)}, your email is verified and your account is ready.
            </p>
            <p style="margin:0;font-size:15px;line-height:1.7;">
              Browse bikes, save favourites and list your own motorcycle whenever you like.
            </p>"""
    payload: Dict[str, object] = {
        "from": sender,
        "to": [recipient_email],
        "subject": "Welcome to BahonXBD",
        "html": _wrap_email_body("Welcome aboard", inner),
        "text": f"Hi {display_name}, your BahonXBD account is verified and ready to use.",
    }
    return send_email_via_resend(payload, api_key)
