import smtplib
import ssl
import logging
from html import escape
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional
from medreminder.core.config import settings

logger = logging.getLogger(__name__)


class EmailNotConfigured(RuntimeError):
    pass


class EmailService:
    def __init__(self):
        # Validate required email configuration
        if not settings.SMTP_SERVER:
            raise EmailNotConfigured("SMTP_SERVER is required but not configured")
        if not settings.SMTP_USERNAME:
            raise EmailNotConfigured("SMTP_USERNAME is required but not configured")
        if not settings.SMTP_PASSWORD:
            raise EmailNotConfigured("SMTP_PASSWORD is required but not configured")
        if not settings.FROM_EMAIL:
            raise EmailNotConfigured("FROM_EMAIL is required but not configured")

        self.smtp_server = settings.SMTP_SERVER
        self.smtp_port = int(settings.SMTP_PORT)
        self.smtp_username = settings.SMTP_USERNAME
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.FROM_EMAIL
        self.app_url = settings.APP_URL

    def send_medication_reminder(
        self,
        to_email: str,
        subject: str,
        message: str = "",
        medication_name: Optional[str] = None,
        dosage: Optional[str] = None,
        instructions: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> None:
        """
        Send a medication reminder / notification email (plain text + HTML).
        Raises smtplib.SMTPException or OSError on transport failure.
        """
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email

        context = {
            "user_name": user_name or "Dear User",
            "medication_name": medication_name or "your prescribed medication",
            "dosage": dosage or "",
            "message": message or "",
            "instructions": instructions or "",
        }
        msg.attach(MIMEText(self._create_reminder_email_text(**context), "plain"))
        msg.attach(MIMEText(self._create_reminder_email_html(**context), "html"))

        self._send_email(msg, to_email)

    def send_notification(self, to_email: str, subject: str, message: str, user_name: Optional[str] = None) -> None:
        """Plain account notification (save/delete confirmations); no dosing prompt."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email

        user_name = user_name or "Dear User"
        text = "\n".join([
            subject,
            "",
            f"Hello {user_name},",
            "",
            message,
            "",
            f"Manage your medications: {self.app_url}",
        ])
        html = f"""
        <!DOCTYPE html>
        <html>
        <head><meta charset="utf-8"><title>{escape(subject)}</title></head>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                <h2>{escape(subject)}</h2>
                <p>Hello {escape(user_name)},</p>
                <p>{escape(message)}</p>
                <p><a href="{self.app_url}">Manage your medications</a></p>
            </div>
        </body>
        </html>
        """
        msg.attach(MIMEText(text, "plain"))
        msg.attach(MIMEText(html, "html"))

        self._send_email(msg, to_email)

    def _create_reminder_email_text(self, user_name: str, medication_name: str, dosage: str,
                                    message: str, instructions: str) -> str:
        """Create plain text email content"""
        lines = [
            "Medication Reminder",
            "",
            f"Hello {user_name},",
            "",
            "This is a friendly reminder to take your medication:",
            "",
            f"Medication: {medication_name}",
        ]
        if dosage:
            lines.append(f"Dosage: {dosage}")
        if message:
            lines.append(f"Note: {message}")
        if instructions:
            lines.append(f"Instructions: {instructions}")
        lines += [
            "",
            "Time to take your medication now!",
            "",
            "Important Reminders:",
            "- Take your medication at the prescribed time",
            "- Follow the dosage instructions carefully",
            "- Contact your healthcare provider if you have concerns",
            "",
            f"Manage your reminders: {self.app_url}",
        ]
        return "\n".join(lines)

    def _create_reminder_email_html(self, user_name: str, medication_name: str, dosage: str,
                                    message: str, instructions: str) -> str:
        """Create HTML email content"""
        user_name, medication_name = escape(user_name), escape(medication_name)
        dosage, message, instructions = escape(dosage), escape(message), escape(instructions)
        details = ""
        if dosage:
            details += f"<p><strong>Dosage:</strong> {dosage}</p>"
        if message:
            details += f"<p><strong>Reminder Note:</strong> {message}</p>"
        if instructions:
            details += f"<p><strong>Instructions:</strong> {instructions}</p>"
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <meta name="viewport" content="width=device-width, initial-scale=1.0">
            <title>Medication Reminder</title>
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background-color: #0E7490; color: white; padding: 20px; text-align: center; }}
                .content {{ padding: 30px; background-color: #f9f9f9; }}
                .medication {{ background: white; padding: 20px; border: 1px solid #e0e0e0; margin: 20px 0; }}
                .button {{ display: inline-block; background-color: #0E7490; color: white; padding: 12px 30px; text-decoration: none; border-radius: 5px; margin: 20px 0; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>Medication Reminder</h1>
                </div>
                <div class="content">
                    <p>Hello {user_name},</p>
                    <p>This is a friendly reminder to take your medication:</p>
                    <div class="medication">
                        <h3>{medication_name}</h3>
                        {details}
                        <p><strong>Time to take your medication now!</strong></p>
                    </div>
                    <a href="{self.app_url}" class="button">Open Medications</a>
                </div>
            </div>
        </body>
        </html>
        """

    def _send_email(self, msg: MIMEMultipart, to_email: str) -> None:
        """Send email using SMTP"""
        logger.info(f"[Email] Sending via {self.smtp_server}:{self.smtp_port} to {to_email}")

        # Zoho requires FROM_EMAIL to match SMTP_USERNAME
        if "zoho" in self.smtp_server.lower() and self.from_email != self.smtp_username:
            logger.warning(
                f"[Email] FROM_EMAIL ({self.from_email}) does not match SMTP_USERNAME; "
                f"rewriting From header to {self.smtp_username}"
            )
            msg.replace_header("From", self.smtp_username)

        context = ssl.create_default_context()
        if self.smtp_port == 465:
            # SSL connection for port 465
            with smtplib.SMTP_SSL(self.smtp_server, self.smtp_port, context=context, timeout=30) as server:
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
        else:
            # STARTTLS for port 587
            with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=30) as server:
                server.starttls(context=context)
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)

        logger.info(f"[Email] Sent successfully to {to_email}")
