import logging
from typing import Any, Dict, List, Optional

import resend

from outreach_sequencer.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class NotificationService:
    """Service for sending operator email notifications via Resend."""

    def __init__(self, api_key: Optional[str] = None, from_email: str = 'notifications@example.com',
                 to_emails: Optional[List[str]] = None, enabled: bool = False):
        self.resend_api_key = api_key
        self.from_email = from_email
        self.to_emails = [email.strip() for email in (to_emails or []) if email and email.strip()]
        self.enabled = enabled

        if self.enabled and not self.resend_api_key:
            logger.warning("No Resend API key found - notifications will be disabled")
            self.enabled = False
        elif self.enabled:
            resend.api_key = self.resend_api_key
            logger.info("Resend API key configured for operator notifications")

    @classmethod
    def from_config(cls, config) -> 'NotificationService':
        return cls(
            api_key=config.get('RESEND_API_KEY'),
            from_email=config.get('NOTIFY_EMAIL_FROM', 'notifications@example.com'),
            to_emails=(config.get('NOTIFY_EMAIL_TO') or '').split(','),
            enabled=config.get('NOTIFICATIONS_ENABLED', False),
        )

    def send_stall_notification(self, execution, sequence=None, error_message: Optional[str] = None) -> bool:
        """Tell operators that an execution stopped retrying and needs attention."""
        if not self.enabled:
            logger.info("Notifications disabled - skipping stall notification")
            return False

        sequence_name = sequence.name if sequence is not None else execution.sequence_id
        subject = f"Outreach stalled: {sequence_name} (target {execution.target_id})"
        html_content = self._create_stall_notification_template(execution, sequence_name, error_message)
        return self._deliver(subject, html_content, 'stall')

    def send_error_notification(self, error_type: str, error_message: str, context: Dict[str, Any] = None) -> bool:
        """Send notification for system errors."""
        if not self.enabled:
            logger.info("Notifications disabled - skipping error notification")
            return False

        subject = f"System Error: {error_type}"
        html_content = self._create_error_notification_template(error_type, error_message, context)
        return self._deliver(subject, html_content, 'error')

    def _deliver(self, subject: str, html_content: str, kind: str) -> bool:
        success_count = 0
        for email in self.to_emails:
            try:
                response = resend.Emails.send({
                    "from": self.from_email,
                    "to": email,
                    "subject": subject,
                    "html": html_content
                })
                logger.info(f"{kind.capitalize()} notification sent to {email}: {response.get('id')}")
                success_count += 1
            except Exception as e:
                logger.error(f"Failed to send {kind} notification to {email}: {str(e)}")
        return success_count > 0

    def _create_stall_notification_template(self, execution, sequence_name: str, error_message: Optional[str]) -> str:
        """Create HTML template for stall notifications."""
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background: #e67e22; color: white; padding: 20px; border-radius: 8px 8px 0 0; }}
                .content {{ background: #f9f9f9; padding: 20px; border-radius: 0 0 8px 8px; }}
                .highlight {{ background: #fdf2e9; padding: 15px; border-left: 4px solid #e67e22; margin: 15px 0; }}
                .footer {{ margin-top: 20px; padding-top: 20px; border-top: 1px solid #ddd; font-size: 12px; color: #666; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>Outreach Execution Stalled</h1>
                    <p>Time: {utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}</p>
                </div>

                <div class="content">
                    <div class="highlight">
                        <strong>Sequence:</strong> {sequence_name}<br>
                        <strong>Target:</strong> {execution.target_id}<br>
                        <strong>Step:</strong> {execution.current_step_index + 1}<br>
                        <strong>Last error:</strong> {error_message or execution.last_error or 'Unknown'}
                    </div>

                    <h3>Next Steps</h3>
                    <p>Automatic retries have stopped for this execution. Fix the underlying problem, then retry it with
                    <code>POST /api/v1/executions/{execution.id}/retry</code> or cancel it.</p>
                </div>

                <div class="footer">
                    <p>This notification was sent by Outreach Sequencer</p>
                    <p>Execution ID: {execution.id}</p>
                </div>
            </div>
        </body>
        </html>
        """

    def _create_error_notification_template(self, error_type: str, error_message: str, context: Dict[str, Any] = None) -> str:
        """Create HTML template for error notifications."""
        context_html = ""
        if context:
            context_html = "<h3>Context</h3><div class='highlight'><pre>" + str(context) + "</pre></div>"

        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background: #dc3545; color: white; padding: 20px; border-radius: 8px 8px 0 0; }}
                .content {{ background: #f9f9f9; padding: 20px; border-radius: 0 0 8px 8px; }}
                .highlight {{ background: #ffe6e6; padding: 15px; border-left: 4px solid #dc3545; margin: 15px 0; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>System Error</h1>
                    <p>Time: {utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}</p>
                </div>
                <div class="content">
                    <div class="highlight">
                        <strong>Type:</strong> {error_type}<br>
                        <strong>Message:</strong> {error_message}
                    </div>
                    {context_html}
                </div>
            </div>
        </body>
        </html>
        """
