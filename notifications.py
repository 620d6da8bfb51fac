"""
Email notifications (teacher application decisions)
"""
import logging
import smtplib
from datetime import datetime
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from markupsafe import escape

logger = logging.getLogger(__name__)


class EmailService:
    """Email service for sending notifications"""

    def __init__(self):
        self.smtp_server = None
        self.smtp_port = None
        self.smtp_user = ''
        self.smtp_password = ''
        self.from_email = None
        self.from_name = None
        self.frontend_url = None

    def init_app(self, app):
        self.smtp_server = app.config['MAIL_SERVER']
        self.smtp_port = app.config['MAIL_PORT']
        self.smtp_user = app.config['MAIL_USERNAME']
        self.smtp_password = app.config['MAIL_PASSWORD']
        self.from_email = app.config['MAIL_FROM']
        self.from_name = app.config['MAIL_FROM_NAME']
        self.frontend_url = app.config['FRONTEND_URL']

    def send(self, to_email, subject, html_body, text_body=None):
        """Send an email notification"""
        if not self.smtp_user or not self.smtp_password:
            logger.warning(f"Email not configured. Email would be sent to {to_email}: {subject}")
            return False

        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = to_email

            if text_body:
                msg.attach(MIMEText(text_body, 'plain'))
            msg.attach(MIMEText(html_body, 'html'))

            with smtplib.SMTP(self.smtp_server, self.smtp_port) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)

            logger.info(f"Email sent to {to_email}: {subject}")
            return True

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to_email}: {e}")
            return False

    def _wrap(self, title, body):
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background: linear-gradient(135deg, #6366f1, #4338ca); color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0; }}
                .content {{ background: #f8fafc; padding: 30px; border-radius: 0 0 10px 10px; }}
                .button {{ display: inline-block; background: #6366f1; color: white; padding: 15px 30px; text-decoration: none; border-radius: 8px; margin: 20px 0; }}
                .footer {{ text-align: center; padding: 20px; color: #64748b; font-size: 12px; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>Learnity</h1>
                    <p>{title}</p>
                </div>
                <div class="content">
                    {body}
                </div>
                <div class="footer">
                    <p>© {datetime.utcnow().year} Learnity. All rights reserved.</p>
                </div>
            </div>
        </body>
        </html>
        """

    def send_application_approved(self, user):
        """Tell an applicant they can start teaching"""
        subject = "Your Learnity teacher application was approved"
        dashboard = f"{self.frontend_url}/teacher/dashboard"
        html_body = self._wrap('Application approved', f"""
                    <h2>Congratulations {escape(user.name)}!</h2>
                    <p>Your application to teach on Learnity has been approved.</p>
                    <p style="text-align: center;">
                        <a href="{dashboard}" class="button">Open Teacher Dashboard</a>
                    </p>
        """)
        text_body = (f"Congratulations {user.name}!\n\nYour application to teach on Learnity "
                     f"has been approved.\n\nOpen your dashboard: {dashboard}")
        return self.send(user.email, subject, html_body, text_body)

    def send_application_rejected(self, user, reason, reapply_date=None):
        """Tell an applicant why they were rejected and when they may reapply"""
        subject = "Update on your Learnity teacher application"
        reapply = f"You can reapply from {reapply_date:%B %d, %Y}." if reapply_date else ''
        html_body = self._wrap('Application update', f"""
                    <h2>Hi {escape(user.name)},</h2>
                    <p>Thank you for applying to teach on Learnity. Unfortunately your application was not approved.</p>
                    <p><strong>Reason:</strong> {escape(reason)}</p>
                    <p>{reapply}</p>
        """)
        text_body = (f"Hi {user.name},\n\nYour application to teach on Learnity was not approved.\n"
                     f"Reason: {reason}\n{reapply}")
        return self.send(user.email, subject, html_body, text_body)


email_service = EmailService()
