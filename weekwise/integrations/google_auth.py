"""
WeekWise — Google Calendar Authentication.

Each family member connects their own Google account elsewhere; the stored
OAuth token JSON is turned into a Calendar API service here, per user.
"""

from __future__ import annotations

import json
import logging

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]


def get_calendar_service_for_user(token_json: str):
    """Build a Google Calendar API service from stored user credentials.

    Refreshes the token if expired.
    """
    creds = Credentials.from_authorized_user_info(json.loads(token_json), SCOPES)
    if creds.expired and creds.refresh_token:
        creds.refresh(Request())
        logger.info("Google token refreshed")
    return build("calendar", "v3", credentials=creds)
