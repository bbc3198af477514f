"""Gmail API client for outbound district mail"""

import os
import pickle
import base64
from typing import Dict, Optional, Union
from loguru import logger
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

from google.auth.transport.requests import Request
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type


class GmailSender:
    """Send locate request emails through the Gmail API"""

    SCOPES = ['https://www.googleapis.com/auth/gmail.send']

    def __init__(self, token_path: str = 'token.pickle', credentials_path: str = 'credentials.json'):
        """Initialize Gmail sender"""
        self.email = os.getenv('GMAIL_EMAIL')
        if not self.email:
            raise ValueError("GMAIL_EMAIL environment variable not set")
        self.token_path = token_path
        self.credentials_path = credentials_path
        self.service = None
        logger.info(f"Gmail sender initialized for {self.email}")

    def authenticate(self) -> bool:
        """Authenticate with Gmail API using OAuth2"""
        try:
            creds = None

            # Token from environment variable (base64 encoded pickle)
            token_env = os.getenv('GMAIL_TOKEN_B64')
            if token_env:
                try:
                    creds = pickle.loads(base64.b64decode(token_env.encode()))
                    logger.info("Loaded token from environment variable")
                except Exception as e:
                    logger.warning(f"Failed to load token from env var: {e}")

            if not creds and os.path.exists(self.token_path):
                with open(self.token_path, 'rb') as token:
                    creds = pickle.load(token)
                    logger.info("Loaded token from local file")

            if not creds or not creds.valid:
                if creds and creds.expired and creds.refresh_token:
                    logger.info("Refreshing expired credentials...")
                    creds.refresh(Request())
                else:
                    if not os.path.exists(self.credentials_path):
                        logger.error(f"{self.credentials_path} not found and no token available")
                        return False
                    logger.info("Starting OAuth2 flow (local development)...")
                    flow = InstalledAppFlow.from_client_secrets_file(self.credentials_path, self.SCOPES)
                    creds = flow.run_local_server(port=0)

                with open(self.token_path, 'wb') as token:
                    pickle.dump(creds, token)

            self.service = build('gmail', 'v1', credentials=creds)
            logger.success("Gmail authentication successful")
            return True

        except Exception as e:
            logger.error(f"Gmail authentication failed: {e}")
            return False

    @staticmethod
    def build_message(
        sender: str,
        to_email: str,
        subject: str,
        text_body: str,
        html_body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Union[MIMEText, MIMEMultipart]:
        """Build a plain or multipart/alternative MIME message"""
        if html_body:
            message = MIMEMultipart('alternative')
            message.attach(MIMEText(text_body, 'plain'))
            message.attach(MIMEText(html_body, 'html'))
        else:
            message = MIMEText(text_body)

        message['to'] = to_email
        message['from'] = sender
        message['subject'] = subject
        for name, value in (headers or {}).items():
            message[name] = value
        return message

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(HttpError),
        reraise=True
    )
    def send_email(
        self,
        to_email: str,
        subject: str,
        text_body: str,
        html_body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> str:
        """
        Send an email

        Args:
            to_email: Recipient email address
            subject: Email subject
            text_body: Plain-text body
            html_body: Optional HTML alternative
            headers: Extra headers (e.g. X-Request-ID)

        Returns:
            Gmail message id
        """
        if not self.service and not self.authenticate():
            raise RuntimeError("Gmail authentication failed")

        logger.info(f"Sending email to {to_email}: {subject}")
        message = self.build_message(self.email, to_email, subject, text_body, html_body, headers)
        raw_message = base64.urlsafe_b64encode(message.as_bytes()).decode()

        sent = self.service.users().messages().send(
            userId='me',
            body={'raw': raw_message}
        ).execute()

        logger.success(f"Email sent successfully to {to_email} (id: {sent.get('id')})")
        return sent.get('id')
