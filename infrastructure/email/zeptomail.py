"""ZeptoMail implementation of EmailProvider.

Sends over the shared async HttpClient and renders Jinja2 templates from
templates/emails/. Delivery problems are logged and reported as False;
nothing here raises into the recovery flow that triggered the mail.
"""

import os
from typing import Optional

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import EmailSettings
from infrastructure.http_client import HttpClient
from shared.logging import get_logger
from shared.masking import mask_email

log = get_logger(__name__)

_ZEPTO_API_URL = "https://api.zeptomail.com/v1.1/email"
_DEFAULT_TEMPLATE_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
    "templates",
    "emails",
)


class ZeptoMailProvider:
    def __init__(
        self,
        settings: EmailSettings,
        http_client: HttpClient,
        template_dir: str = _DEFAULT_TEMPLATE_DIR,
    ) -> None:
        self._settings = settings
        self._http = http_client
        self._jinja = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=select_autoescape(["html", "xml"]),
        )

    async def _send(
        self,
        to_email: str,
        to_name: Optional[str],
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        if not self._settings.zepto_api_token:
            log.error("zepto_mail_send_failed", reason="token_not_configured")
            return False

        payload: dict = {
            "from": {
                "address": self._settings.zepto_from_email,
                "name": self._settings.zepto_from_name,
            },
            "to": [
                {
                    "email_address": {
                        "address": to_email,
                        "name": to_name or to_email,
                    }
                }
            ],
            "subject": subject,
            "htmlbody": html_body,
        }
        if text_body:
            payload["textbody"] = text_body

        api_key = self._settings.zepto_api_token
        if not api_key.startswith("Zoho-enczapikey "):
            api_key = f"Zoho-enczapikey {api_key}"

        headers = {"Authorization": api_key, "Content-Type": "application/json"}

        try:
            response = await self._http.post(
                _ZEPTO_API_URL, json=payload, headers=headers
            )
        except httpx.HTTPError as e:
            log.error(
                "email_send_error",
                to_email=mask_email(to_email),
                subject=subject,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        if response.status_code in (200, 201, 202):
            log.info("email_sent_success", to_email=mask_email(to_email), subject=subject)
            return True
        log.error(
            "email_sent_failed",
            to_email=mask_email(to_email),
            subject=subject,
            status_code=response.status_code,
            response=response.text[:200],
        )
        return False

    async def send_password_reset_otp(
        self,
        email: str,
        user_name: Optional[str],
        otp_code: str,
        expires_in_minutes: int,
    ) -> bool:
        subject = "Código de recuperación - Histora"
        template = self._jinja.get_template("password_reset_otp.html")
        html_body = template.render(
            otp_code=otp_code,
            user_name=user_name,
            expires_in_minutes=expires_in_minutes,
        )
        text_body = (
            f"Recuperar contraseña - Histora\n\n"
            f"Hola{f' {user_name}' if user_name else ''},\n\n"
            f"Tu código de recuperación es: {otp_code}\n\n"
            f"Este código expira en {expires_in_minutes} minutos.\n"
            f"Si no solicitaste este cambio, ignora este correo."
        )
        return await self._send(email, user_name, subject, html_body, text_body)

    async def send_password_reset_link(
        self,
        email: str,
        user_name: Optional[str],
        reset_link: str,
        expires_in_hours: int,
    ) -> bool:
        subject = "Recuperar Contraseña - Histora"
        template = self._jinja.get_template("password_reset_link.html")
        html_body = template.render(
            reset_link=reset_link,
            user_name=user_name,
            expires_in_hours=expires_in_hours,
        )
        text_body = (
            f"Recuperar contraseña - Histora\n\n"
            f"Hola{f' {user_name}' if user_name else ''},\n\n"
            f"Abre este enlace para elegir una nueva contraseña:\n{reset_link}\n\n"
            f"El enlace expira en {expires_in_hours} horas."
        )
        return await self._send(email, user_name, subject, html_body, text_body)
