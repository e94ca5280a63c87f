"""
Google API service construction.

Two ways in:
  - a service account with domain-wide delegation (admin runs against any
    mailbox; required for Vault)
  - the installed-app OAuth flow for your own mailbox, token cached on disk
"""
import os

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from mailbyebye.config import GMAIL_SCOPES, VAULT_SCOPES
from mailbyebye.errors import AuthError, ValidationError


def check_credentials(config, backend_needs_vault=False):
    """Fail before any remote call if no usable credential set is configured."""
    sa_file = config.get("SERVICE_ACCOUNT_FILE")
    if sa_file:
        if not os.path.exists(sa_file):
            raise ValidationError(
                f"Service account key not found: {sa_file}",
                usage="SERVICE_ACCOUNT_FILE=/path/to/key.json in .mailbyebye_config",
            )
    elif backend_needs_vault:
        raise ValidationError(
            "The bulk-search backend needs a service account",
            usage="set SERVICE_ACCOUNT_FILE and ADMIN_EMAIL in .mailbyebye_config",
        )
    else:
        creds_file = config.get("CREDENTIALS_FILE")
        token_file = config.get("TOKEN_FILE")
        if not (creds_file and os.path.exists(creds_file)) and not (token_file and os.path.exists(token_file)):
            raise ValidationError(
                "No credentials configured",
                usage=(
                    "either SERVICE_ACCOUNT_FILE (domain-wide delegation) or an OAuth "
                    "client saved as credentials.json"
                ),
            )

    if backend_needs_vault and not config.get("ADMIN_EMAIL"):
        raise ValidationError(
            "The bulk-search backend needs ADMIN_EMAIL (a Vault admin to act as)",
            usage="ADMIN_EMAIL=admin@example.com in .mailbyebye_config",
        )


def delegated_credentials(config, subject, scopes):
    try:
        creds = service_account.Credentials.from_service_account_file(
            config["SERVICE_ACCOUNT_FILE"], scopes=scopes
        )
    except (ValueError, OSError) as e:
        raise AuthError(f"Can't load service account key: {e}")
    return creds.with_subject(subject)


def installed_app_credentials(config, scopes):
    """Authenticate with the installed-app OAuth2 flow."""
    creds = None
    token_file = config.get("TOKEN_FILE")

    # Load existing token
    if token_file and os.path.exists(token_file):
        creds = Credentials.from_authorized_user_file(token_file, scopes)
        # Check if token has the required scope
        if creds and creds.scopes and scopes[0] not in creds.scopes:
            print(f"Token has wrong scopes: {creds.scopes}")
            print("Deleting old token and re-authenticating...")
            os.remove(token_file)
            creds = None

    # Refresh or get new credentials
    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            print("Refreshing expired credentials...")
            creds.refresh(Request())
        else:
            print("Opening browser for Gmail authorization...")
            flow = InstalledAppFlow.from_client_secrets_file(config["CREDENTIALS_FILE"], scopes)
            creds = flow.run_local_server(port=0)

        # Save credentials for next run
        if token_file:
            with open(token_file, 'w') as token:
                token.write(creds.to_json())
            print(f"Credentials saved to {token_file}")

    return creds


def build_gmail_service(config, mailbox):
    """Gmail API service acting as `mailbox`."""
    try:
        if config.get("SERVICE_ACCOUNT_FILE"):
            creds = delegated_credentials(config, mailbox, GMAIL_SCOPES)
        else:
            creds = installed_app_credentials(config, GMAIL_SCOPES)
        return build('gmail', 'v1', credentials=creds, cache_discovery=False)
    except GoogleAuthError as e:
        raise AuthError(f"Gmail authorization failed for {mailbox}: {e}")


def build_vault_service(config):
    """Vault API service acting as ADMIN_EMAIL."""
    try:
        creds = delegated_credentials(config, config["ADMIN_EMAIL"], VAULT_SCOPES)
        return build('vault', 'v1', credentials=creds, cache_discovery=False)
    except GoogleAuthError as e:
        raise AuthError(f"Vault authorization failed for {config['ADMIN_EMAIL']}: {e}")
