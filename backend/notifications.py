"""Email notifications: meal-options broadcast, invitations and feedback relay."""
import logging
import os
import re
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

logger = logging.getLogger(__name__)

PLACEHOLDER_CREDENTIALS = {"your-email@gmail.com", "your-app-password", "your-cpanel-password-here"}
TAG_RE = re.compile(r"<[^>]*>")


class EmailNotifier:
    """SMTP sender.

    Every send returns ``{"success": bool, "error"?: str}`` instead of raising,
    so callers can treat delivery as fire-and-forget.
    """

    def __init__(
        self,
        smtp_server: str = None,
        smtp_port: int = None,
        smtp_user: str = None,
        smtp_password: str = None,
        from_email: str = None,
        app_url: str = None,
    ):
        self.smtp_server = smtp_server or os.getenv("SMTP_SERVER", "smtp.office365.com")
        self.smtp_port = smtp_port or int(os.getenv("SMTP_PORT", "587"))
        self.smtp_user = smtp_user or os.getenv("SMTP_USER")
        self.smtp_password = smtp_password or os.getenv("SMTP_PASSWORD")
        self.from_email = from_email or os.getenv("FROM_EMAIL", "Meal Orders <noreply@devhub.tech>")
        self.app_url = app_url or os.getenv("APP_URL", "http://localhost:3000")

    def is_configured(self) -> bool:
        return bool(
            self.smtp_user
            and self.smtp_password
            and self.smtp_user not in PLACEHOLDER_CREDENTIALS
            and self.smtp_password not in PLACEHOLDER_CREDENTIALS
        )

    def _deliver(self, msg: MIMEMultipart, recipients: list[str]):
        smtp_port = self.smtp_port
        logger.info(f"Connecting to SMTP server: {self.smtp_server}:{smtp_port}")
        if smtp_port == 465:
            server = smtplib.SMTP_SSL(self.smtp_server, smtp_port, timeout=10)
        else:
            try:
                server = smtplib.SMTP(self.smtp_server, smtp_port, timeout=10)
            except OSError as e:
                logger.warning(f"Port {smtp_port} failed: {str(e)}, trying port 465 with SSL...")
                server = smtplib.SMTP_SSL(self.smtp_server, 465, timeout=10)
                smtp_port = 465
        try:
            # Port 465 is already SSL
            if smtp_port != 465:
                server.starttls()
            server.login(self.smtp_user, self.smtp_password)
            server.send_message(msg, to_addrs=recipients)
        finally:
            try:
                server.quit()
            except smtplib.SMTPException as e:
                logger.debug(f"SMTP quit failed: {str(e)}")

    def send_email(self, to: str | list[str], subject: str, html: str, text: str | None = None) -> dict:
        if not self.is_configured():
            logger.info("Email not configured - skipping send")
            return {"success": False, "error": "Email not configured"}

        recipients = [to] if isinstance(to, str) else list(to)
        if not recipients:
            return {"success": False, "error": "At least one recipient email address is required"}

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(text or TAG_RE.sub("", html), "plain"))
        msg.attach(MIMEText(html, "html"))

        try:
            self._deliver(msg, recipients)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed: {str(e)}")
            return {"success": False, "error": f"SMTP authentication failed: {str(e)}"}
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {recipients}: {str(e)}")
            return {"success": False, "error": str(e)}

        logger.info(f"Email sent to: {recipients}")
        return {"success": True}

    def send_meal_options_notification(self, week_start_date: str, users: list) -> dict:
        """Tell every user new options are up. One failed address never stops the rest."""
        if not self.is_configured():
            logger.info("Email not configured - skipping notification")
            return {"success": False, "error": "Email not configured", "sent": 0, "failed": 0}

        recipients = [u.email for u in users if u.email]
        if not recipients:
            logger.info("No users to notify")
            return {"success": False, "error": "No users to notify", "sent": 0, "failed": 0}

        select_url = f"{self.app_url}/select-meals.html"
        results = {"success": True, "sent": 0, "failed": 0, "errors": []}
        for email in recipients:
            result = self.send_email(
                email,
                f"Meal options available - week of {week_start_date}",
                meal_options_html(week_start_date, select_url),
                f"New meal options are available for the week of {week_start_date}.\n"
                f"Make your selection at {select_url}",
            )
            if result["success"]:
                results["sent"] += 1
            else:
                results["failed"] += 1
                results["errors"].append({"email": email, "error": result.get("error")})

        logger.info(f"Email notification summary: {results['sent']} sent, {results['failed']} failed")
        return results

    def send_invitation_email(self, email: str, token: str, is_admin: bool, invited_by_email: str | None) -> dict:
        accept_url = f"{self.app_url}/accept-invitation.html?token={token}"
        return self.send_email(
            email,
            "You've been invited to the meal ordering app",
            invitation_html(accept_url, is_admin, invited_by_email),
            f"You have been invited by {invited_by_email or 'an administrator'}.\n"
            f"Create your account here (valid for 48 hours): {accept_url}",
        )

    def send_feedback(self, to: str, subject: str, message: str, sender_name: str | None, sender_email: str | None) -> dict:
        return self.send_email(
            to,
            f"[Meal Orders Feedback] {subject}",
            feedback_html(subject, message, sender_name, sender_email),
        )


def meal_options_html(week_start_date: str, select_url: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: #333;">New meal options are available</h2>
        <p>The menu for the week of <strong>{escape(week_start_date)}</strong> has been published.</p>
        <p><a href="{escape(select_url)}" style="background-color: #000; color: #fff; padding: 10px 20px;
           text-decoration: none; border-radius: 4px;">Choose your meals</a></p>
    </div>
    """


def invitation_html(accept_url: str, is_admin: bool, invited_by_email: str | None) -> str:
    role = "an administrator" if is_admin else "a user"
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: #333;">You've been invited</h2>
        <p>{escape(invited_by_email or 'An administrator')} invited you to join as {role}.</p>
        <p><a href="{escape(accept_url)}">Create your account</a></p>
        <p style="color: #666; font-size: 12px;">This invitation expires in 48 hours.</p>
    </div>
    """


def feedback_html(subject: str, message: str, sender_name: str | None, sender_email: str | None) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: #7c3aed;">New feedback</h2>
        <div style="background: #f3f4f6; padding: 20px; border-radius: 8px; margin: 20px 0;">
            <p><strong>From:</strong> {escape(sender_name or 'Unknown')} ({escape(sender_email or '')})</p>
            <p><strong>Subject:</strong> {escape(subject)}</p>
            <p><strong>Date:</strong> {datetime.now().strftime("%d.%m.%Y %H:%M")}</p>
        </div>
        <div style="background: white; padding: 20px; border: 1px solid #e5e7eb; border-radius: 8px;">
            <p style="white-space: pre-wrap; color: #1f2937;">{escape(message)}</p>
        </div>
    </div>
    """
